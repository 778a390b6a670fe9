import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .config import Settings, get_settings
from .database import Base, build_engine, build_session_factory
from .errors import register_error_handlers
from .service import ImageService
from .storage import UploadStorage


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    storage = UploadStorage(Path(settings.UPLOAD_ROOT), settings.PUBLIC_URL_PREFIX)
    # raises if the upload root cannot be created
    storage.init_directories()

    app = FastAPI(title="Newsdesk image API", version="0.1.0")
    app.state.settings = settings
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.image_service = ImageService(
        storage,
        max_file_size=settings.MAX_FILE_SIZE_BYTES,
        max_files=settings.MAX_FILES_PER_REQUEST,
        workers=settings.VARIANT_WORKERS,
    )
    register_error_handlers(app)

    # routers
    from .routers import images, stats  # deferred to avoid circular imports

    app.include_router(images.router, prefix="/images", tags=["images"])
    app.include_router(stats.router, prefix="/stats", tags=["stats"])
    app.mount(storage.public_prefix, StaticFiles(directory=storage.root), name="uploads")

    @app.on_event("startup")
    def on_startup() -> None:
        Base.metadata.create_all(bind=app.state.engine)

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        app.state.image_service.shutdown()
        app.state.engine.dispose()

    return app


app = create_app()

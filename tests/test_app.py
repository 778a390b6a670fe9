from io import BytesIO

from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text

from conftest import JWT_SECRET, auth_headers, make_image_bytes
from newsdesk.config import Settings
from newsdesk.main import create_app


def test_app_uses_database_from_settings(tmp_path):
    db_file = tmp_path / "assets.db"
    settings = Settings(
        DATABASE_URL=f"sqlite:///{db_file}",
        UPLOAD_ROOT=str(tmp_path / "uploads"),
        JWT_SECRET=JWT_SECRET,
        VARIANT_WORKERS=1,
    )
    application = create_app(settings)

    # entering the client runs startup, which creates the tables
    with TestClient(application) as client:
        response = client.post(
            "/images/upload",
            files={"image": ("desk.jpg", BytesIO(make_image_bytes((64, 48))), "image/jpeg")},
            headers=auth_headers("admin"),
        )
        assert response.status_code == status.HTTP_200_OK, response.text

    check = create_engine(f"sqlite:///{db_file}")
    try:
        with check.connect() as conn:
            names = conn.execute(text("SELECT original_name FROM image_assets")).scalars().all()
    finally:
        check.dispose()
    assert names == ["desk.jpg"]


def test_app_state_carries_its_own_engine(tmp_path):
    settings = Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'other.db'}", UPLOAD_ROOT=str(tmp_path / "u"))
    application = create_app(settings)
    try:
        assert application.state.engine.url.database == str(tmp_path / "other.db")
        assert application.state.session_factory.kw["bind"] is application.state.engine
    finally:
        application.state.image_service.shutdown()
        application.state.engine.dispose()

import os
import sys
import tempfile
from io import BytesIO

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# must be set before newsdesk.config is first read
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="newsdesk-uploads-"))

import jwt
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from newsdesk.config import Settings
from newsdesk.database import Base
from newsdesk.main import create_app

JWT_SECRET = "newsdesk-test-secret-0123456789abcdef"


def make_image_bytes(size=(2000, 1500), fmt="JPEG", color=(200, 30, 30), mode="RGB") -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def auth_headers(role: str = "editor", secret: str = JWT_SECRET) -> dict:
    token = jwt.encode({"sub": "user-1", "role": role}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def upload_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(upload_root):
    settings = Settings(
        DATABASE_URL="sqlite://",
        UPLOAD_ROOT=str(upload_root),
        JWT_SECRET=JWT_SECRET,
        VARIANT_WORKERS=2,
    )
    application = create_app(settings)
    yield application
    application.state.image_service.shutdown()
    application.state.engine.dispose()


@pytest.fixture
def db_session(app):
    engine = app.state.engine
    Base.metadata.create_all(bind=engine)
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(app, db_session):
    return TestClient(app)


@pytest.fixture
def editor():
    return auth_headers("editor")


@pytest.fixture
def upload(client, editor):
    """Upload one generated JPEG and return the response ``data``."""

    def _upload(field="image", size=(2000, 1500), name="photo.jpg", alt_text=None):
        data = {"altText": alt_text} if alt_text is not None else None
        response = client.post(
            "/images/upload",
            files={field: (name, BytesIO(make_image_bytes(size)), "image/jpeg")},
            data=data,
            headers=editor,
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _upload

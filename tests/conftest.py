import io
import os
import tempfile
from pathlib import Path

# env vóór de eerste chat_uploads import: Settings() leest bij import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ANTIVIRUS_ENABLED", "false")
os.environ.setdefault("CDN_URL", "https://cdn.test")
os.environ.setdefault("S3_BUCKET_NAME", "chat-uploads")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{Path(tempfile.gettempdir()) / 'chat_uploads_test.db'}",
)

# Dummy env zodat boto3/moto niet zeurt
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from chat_uploads.auth.jwt import create_access_token
from chat_uploads.core.errors import NotFoundError, ObjectNotFoundError
from chat_uploads.db import Base, engine
from chat_uploads.dependencies import get_orchestrator
from chat_uploads.main import app
from chat_uploads.schemas.uploads import ScanStatus, ScanVerdict
from chat_uploads.services.media import MediaProcessor
from chat_uploads.services.orchestrator import UploadOrchestrator
from chat_uploads.storage.keys import generate_object_key
from chat_uploads.storage.object_store import ObjectHead


@pytest.fixture(scope="session", autouse=True)
def _create_test_db():
    from chat_uploads import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


# -------------------------
# Fakes
# -------------------------
class FakeStore:
    """In-memory object store; elke netwerk-achtige call komt in ``calls``."""

    def __init__(self, bucket: str = "chat-uploads", cdn_url: str = "https://cdn.test"):
        self.bucket = bucket
        self.cdn_url = cdn_url
        self.objects: Dict[str, dict] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.fail_on: Dict[str, Exception] = {}
        self.fail_on_key: Dict[str, Exception] = {}
        self.healthy = True

    def _record(self, action: str, key: Optional[str] = None) -> None:
        self.calls.append((action, key))
        if action in self.fail_on:
            raise self.fail_on[action]
        if key is not None and key in self.fail_on_key:
            raise self.fail_on_key[key]

    def actions(self) -> List[str]:
        return [a for a, _ in self.calls]

    def seed(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = {"data": data, "content_type": content_type, "metadata": {}}

    def generate_key(self, category, identifier, extension):
        self._record("generate_key")
        return generate_object_key(category, identifier, extension)

    def public_url(self, key: str) -> str:
        return f"{self.cdn_url}/{self.bucket}/{key}"

    def presign_upload(self, key: str, mime_type: str, ttl: int = 3600) -> str:
        self._record("presign_upload", key)
        return f"https://s3.test/{self.bucket}/{key}?X-Amz-Expires={ttl}"

    def put(self, key, data, mime_type, metadata=None) -> str:
        self._record("put", key)
        body = bytes(data) if isinstance(data, (bytes, bytearray)) else Path(data).read_bytes()
        self.objects[key] = {"data": body, "content_type": mime_type, "metadata": dict(metadata or {})}
        return self.public_url(key)

    def delete(self, key: str) -> None:
        self._record("delete", key)
        self.objects.pop(key, None)

    def exists(self, key: str) -> bool:
        self._record("exists", key)
        return key in self.objects

    def head_metadata(self, key: str) -> ObjectHead:
        self._record("head", key)
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        obj = self.objects[key]
        return ObjectHead(content_type=obj["content_type"], content_length=len(obj["data"]))

    def download(self, key: str, path) -> None:
        self._record("download", key)
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        Path(path).write_bytes(self.objects[key]["data"])

    def health_check(self) -> bool:
        self._record("health")
        return self.healthy


class FakeScanner:
    def __init__(self, status: ScanStatus = ScanStatus.CLEAN, threats: Optional[List[str]] = None):
        self.status = status
        self.threats = threats
        self.scanned: List[Path] = []
        self.healthy = True
        self.initialized = False

    def initialize(self):
        self.initialized = True

    def scan(self, target) -> ScanVerdict:
        path = Path(target)
        # scanner moet altijd een volledig gedownload bestand zien
        assert path.exists()
        self.scanned.append(path)
        return ScanVerdict(
            status=self.status,
            engine="ClamAV",
            engine_version="ClamAV 1.2.0",
            threats=self.threats,
        )

    def health_check(self) -> bool:
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy


class FakeLinker:
    def __init__(self):
        self.links: List[Tuple[str, str]] = []
        self.known_users = {"user-1"}

    def link_avatar(self, user_id: str, avatar_url: str) -> None:
        if user_id not in self.known_users:
            raise NotFoundError(f"User not found: {user_id}")
        self.links.append((user_id, avatar_url))


# -------------------------
# Fixtures
# -------------------------
def make_image_bytes(size=(640, 480), fmt="JPEG", mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else (200, 30, 30, 128)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def scanner() -> FakeScanner:
    return FakeScanner()


@pytest.fixture
def linker() -> FakeLinker:
    return FakeLinker()


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def media(scratch_dir) -> MediaProcessor:
    return MediaProcessor(scratch_dir, command_timeout=10)


@pytest.fixture
def orchestrator(store, scanner, media, linker) -> UploadOrchestrator:
    return UploadOrchestrator(store, scanner, media, linker)


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token(user_id='user-1')}"}

import os
import sys
import tempfile
import uuid

BASE_DIR = tempfile.mkdtemp(prefix="lemon-tests-")

os.environ["LEMON_DATABASE_URL"] = f"sqlite:///{os.path.join(BASE_DIR, 'default.sqlite3')}"
os.environ["LEMON_ENV"] = "development"
os.environ["LEMON_APP_ORIGIN"] = "http://localhost"
os.environ["LEMON_BLOB_BACKEND"] = "http"
os.environ["LEMON_BLOB_READ_WRITE_TOKEN"] = "test-blob-token"
os.environ["LEMON_BLOB_API_URL"] = "https://blob.test"
os.environ["LEMON_PASSWORD_HASH_ITERATIONS"] = "1000"
os.environ["LEMON_PUBLIC_REDIRECT"] = "false"
os.environ["LEMON_LOG_FORMAT"] = "plain"
os.environ["LEMON_METRICS_ENABLED"] = "false"
os.environ["LEMON_OTEL_ENABLED"] = "false"
os.environ["LEMON_SENTRY_DSN"] = ""

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from lemon import create_app
from lemon.models import build_engine
from lemon.services.access import ROLE_ADMIN, ROLE_USER, VISIBILITY_PUBLIC
from lemon.services.blob import BlobConfigError, BlobError, BlobStream, StoredBlob
from lemon.services.container import ServiceContainer
from lemon.services.credentials import create_upload_key, hash_password, hash_upload_key
from lemon.services.rate_limiter import RateLimiter
from lemon.services.sessions import SESSION_COOKIE_NAME, create_session
from lemon.services.store import Store

DEFAULT_PASSWORD = "correct-horse-42"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeBlob:
    """In-memory object store with switchable failures."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.token = "test-blob-token"
        self.fail_put = None
        self.fail_delete = False
        self.fail_open = False
        self.opened = []
        self.closed = []

    @property
    def can_write(self) -> bool:
        return bool(self.token)

    @property
    def can_read_private(self) -> bool:
        return bool(self.token)

    def put(self, pathname, data, content_type):
        if self.fail_put == "config":
            raise BlobConfigError("Blob storage token is not configured.")
        if self.fail_put:
            raise BlobError("upstream 500")
        self.objects[pathname] = (bytes(data), content_type)
        return StoredBlob(url=f"https://blob.test/{pathname}", pathname=pathname)

    def delete(self, blob):
        if self.fail_delete:
            raise BlobError("upstream 500")
        self.objects.pop(blob.pathname, None)
        self.deleted.append(blob.pathname)

    def open(self, blob, *, private):
        if self.fail_open:
            raise BlobError("upstream 404")
        data, content_type = self.objects[blob.pathname]
        self.opened.append((blob.pathname, private))
        return BlobStream(
            iter([data]),
            content_type=content_type,
            content_length=len(data),
            closer=lambda: self.closed.append(blob.pathname),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blob():
    return FakeBlob()


@pytest.fixture
def store(tmp_path, clock):
    engine = build_engine(f"sqlite:///{tmp_path / 'lemon.sqlite3'}")
    yield Store(engine, clock=clock)
    engine.dispose()


@pytest.fixture
def services(store, blob, clock):
    return ServiceContainer(
        store=store,
        blob=blob,
        rate_limiter=RateLimiter(clock=clock),
        clock=clock,
    )


@pytest.fixture
def app(services):
    app = create_app(services)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(store):
    """Create a user directly in the store; returns ``(record, upload_key)``."""
    counter = {"n": 0}

    def _make(username=None, *, role=ROLE_USER, password=DEFAULT_PASSWORD, visibility=VISIBILITY_PUBLIC):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        upload_key = create_upload_key()
        user = store.create_user(
            email=f"{username}@example.com",
            username=username,
            password_hash=hash_password(password),
            upload_key_hash=hash_upload_key(upload_key),
            role=role,
        )
        if visibility != VISIBILITY_PUBLIC:
            store.set_default_visibility(user.id, visibility)
            user = store.get_user(user.id)
        return user, upload_key

    return _make


@pytest.fixture
def make_admin(make_user):
    def _make(username="admin"):
        return make_user(username, role=ROLE_ADMIN)

    return _make


@pytest.fixture
def login(client, store, clock):
    """Attach a fresh session cookie for ``user`` to the test client."""

    def _login(user):
        token, _expires_at = create_session(store, user.id, clock())
        client.set_cookie(SESSION_COOKIE_NAME, token)
        return token

    return _login


@pytest.fixture
def make_media(store, blob):
    def _make(owner, *, visibility=VISIBILITY_PUBLIC, name="photo.png", data=b"\x89PNG\r\n\x1a\nbody"):
        pathname = f"{owner.id}/{uuid.uuid4()}.png"
        stored = blob.put(pathname, data, "image/png")
        return store.create_media(
            owner_id=owner.id,
            visibility=visibility,
            original_name=name,
            content_type="image/png",
            size=len(data),
            blob_url=stored.url,
            blob_pathname=stored.pathname,
        )

    return _make

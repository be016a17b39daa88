from __future__ import annotations

from unittest.mock import MagicMock, patch

from flask import Flask

from lemon.services.blob import HttpBlobClient
from lemon.services.container import (
    ServiceContainer,
    build_services,
    get_services,
    init_services,
)
from lemon.services.rate_limiter import RateLimiter
from lemon.services.store import Store


def test_service_container_now_uses_clock():
    container = ServiceContainer(
        store=MagicMock(spec=Store),
        blob=MagicMock(spec=HttpBlobClient),
        rate_limiter=RateLimiter(),
        clock=lambda: 1234.5,
    )
    assert container.now() == 1234.5


def test_build_services(tmp_path):
    from lemon.models import build_engine

    engine = build_engine(f"sqlite:///{tmp_path / 'built.sqlite3'}")
    with patch("lemon.services.container.get_engine", return_value=engine):
        container = build_services()

    assert isinstance(container, ServiceContainer)
    assert isinstance(container.store, Store)
    assert isinstance(container.blob, HttpBlobClient)
    assert isinstance(container.rate_limiter, RateLimiter)
    engine.dispose()


def test_init_services_with_provided_container(services):
    app = Flask(__name__)

    result = init_services(app, services=services)

    assert result is services
    assert app.extensions["services"] is services


def test_init_services_without_provided_container():
    app = Flask(__name__)
    built = MagicMock(spec=ServiceContainer)

    with patch("lemon.services.container.build_services", return_value=built):
        result = init_services(app)

    assert result is built
    assert app.extensions["services"] is built


def test_get_services_when_exists(services):
    app = Flask(__name__)
    app.extensions["services"] = services

    with app.app_context():
        assert get_services() is services


def test_get_services_creates_and_caches():
    app = Flask(__name__)
    built = MagicMock(spec=ServiceContainer)

    with patch("lemon.services.container.build_services", return_value=built) as mock_build:
        with app.app_context():
            first = get_services()
            second = get_services()

    assert first is second is built
    mock_build.assert_called_once()

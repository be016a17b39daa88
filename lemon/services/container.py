from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from flask import current_app

from ..models import get_engine
from .blob import HttpBlobClient, S3BlobClient, build_blob_client
from .rate_limiter import RateLimiter
from .store import Store


@dataclass
class ServiceContainer:
    store: Store
    blob: HttpBlobClient | S3BlobClient
    rate_limiter: RateLimiter
    clock: Callable[[], float] = field(default=time.time)

    def now(self) -> float:
        return self.clock()


def build_services() -> ServiceContainer:
    return ServiceContainer(
        store=Store(get_engine()),
        blob=build_blob_client(),
        rate_limiter=RateLimiter(),
    )


def init_services(app, services: ServiceContainer | None = None) -> ServiceContainer:
    container = services or build_services()
    app.extensions["services"] = container
    return container


def get_services() -> ServiceContainer:
    container = current_app.extensions.get("services")
    if container is None:
        container = build_services()
        current_app.extensions["services"] = container
    return container

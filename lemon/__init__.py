from __future__ import annotations

from .secrets import load_external_secrets

# Settings are read into module constants at import time, so external
# secrets have to land in the environment first.
load_external_secrets()

from .server import create_app  # noqa: E402

__all__ = ["create_app"]

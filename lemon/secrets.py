"""
Startup secrets bootstrap.

Runs from ``lemon/__init__.py`` before any module reads ``LEMON_*`` settings,
so it must not import the rest of the package. Sources are tried in order
(JSON file, AWS Secrets Manager, Vault KV) and only keys carrying the
configured prefix are copied into the process environment.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from functools import partial
from typing import Callable, MutableMapping

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("lemon.secrets")

TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
VAULT_TIMEOUT_SECONDS = 5

SecretSource = Callable[[], dict]


class SecretsError(RuntimeError):
    pass


def _flag(environ, name: str) -> bool:
    return str(environ.get(name) or "").strip().lower() in TRUE_VALUES


def _setting(environ, *names: str) -> str:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return ""


def _as_string_map(payload) -> dict[str, str]:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Ignoring secrets payload that is not JSON")
            return {}
    if not isinstance(payload, dict):
        return {}
    return {str(key): str(value) for key, value in payload.items()}


def _read_file(path: str) -> dict[str, str]:
    with open(path, encoding="utf-8") as handle:
        return _as_string_map(handle.read())


def _read_aws(secret_id: str, region: str | None, client=None) -> dict[str, str]:
    client = client or boto3.client(
        "secretsmanager",
        region_name=region,
        config=BotoConfig(retries={"max_attempts": 3, "mode": "standard"}),
    )
    resp = client.get_secret_value(SecretId=secret_id)
    if resp.get("SecretString"):
        return _as_string_map(resp["SecretString"])
    if resp.get("SecretBinary") is not None:
        return _as_string_map(base64.b64decode(resp["SecretBinary"]))
    return {}


def _read_vault(addr: str, token: str, path: str, namespace: str | None = None) -> dict[str, str]:
    headers = {"X-Vault-Token": token}
    if namespace:
        headers["X-Vault-Namespace"] = namespace
    resp = requests.get(
        f"{addr.rstrip('/')}/v1/{path.lstrip('/')}", headers=headers, timeout=VAULT_TIMEOUT_SECONDS
    )
    resp.raise_for_status()
    data = resp.json().get("data")
    # KV v2 nests the values one level deeper than KV v1.
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    return _as_string_map(data)


def configured_sources(environ) -> list[tuple[str, SecretSource]]:
    sources: list[tuple[str, SecretSource]] = []

    path = _setting(environ, "LEMON_SECRETS_FILE")
    if path:
        sources.append(("file", partial(_read_file, path)))

    secret_id = _setting(environ, "LEMON_AWS_SECRETS_MANAGER_SECRET_ID")
    if secret_id:
        region = _setting(environ, "LEMON_AWS_REGION", "AWS_REGION") or None
        sources.append(("aws", partial(_read_aws, secret_id, region)))

    vault_addr = _setting(environ, "LEMON_VAULT_ADDR", "VAULT_ADDR")
    vault_token = _setting(environ, "LEMON_VAULT_TOKEN", "VAULT_TOKEN")
    vault_path = _setting(environ, "LEMON_VAULT_SECRET_PATH")
    if vault_addr and vault_token and vault_path:
        namespace = _setting(environ, "LEMON_VAULT_NAMESPACE", "VAULT_NAMESPACE") or None
        sources.append(("vault", partial(_read_vault, vault_addr, vault_token, vault_path, namespace)))

    return sources


def apply_secrets(values: dict[str, str], environ, *, prefix: str, override: bool) -> list[str]:
    applied = []
    for key, value in values.items():
        if not key.startswith(prefix):
            continue
        if not override and environ.get(key):
            continue
        environ[key] = value
        applied.append(key)
    return applied


def load_external_secrets(environ: MutableMapping[str, str] | None = None) -> list[str]:
    """
    Copy secrets from every configured source into ``environ``.

    Existing values win unless ``LEMON_SECRETS_OVERRIDE`` is set. With
    ``LEMON_SECRETS_REQUIRED`` a failing source, or no secrets at all,
    raises ``SecretsError``; otherwise failures are logged and skipped. Returns the
    keys that were written.
    """
    environ = os.environ if environ is None else environ
    prefix = _setting(environ, "LEMON_SECRETS_PREFIX") or "LEMON_"
    override = _flag(environ, "LEMON_SECRETS_OVERRIDE")
    required = _flag(environ, "LEMON_SECRETS_REQUIRED")

    sources = configured_sources(environ)
    applied: list[str] = []
    for name, source in sources:
        try:
            values = source()
        except (OSError, ValueError, requests.RequestException, BotoCoreError, ClientError) as exc:
            logger.warning("Loading secrets from %s failed: %s", name, exc)
            if required:
                raise SecretsError(f"Required secrets source {name} failed") from exc
            continue
        written = apply_secrets(values, environ, prefix=prefix, override=override)
        logger.info("Loaded %s secrets from %s", len(written), name)
        applied.extend(written)

    if required and sources and not applied:
        raise SecretsError("LEMON_SECRETS_REQUIRED is set but no secrets were loaded")
    return applied

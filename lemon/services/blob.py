from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Iterator
from urllib.parse import quote

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import parse_int

logger = logging.getLogger("lemon.blob")

BLOB_BACKEND = (os.environ.get("LEMON_BLOB_BACKEND") or "http").strip().lower()
BLOB_API_URL = (
    os.environ.get("LEMON_BLOB_API_URL") or "https://blob.vercel-storage.com"
).strip().rstrip("/")
BLOB_READ_WRITE_TOKEN = (os.environ.get("LEMON_BLOB_READ_WRITE_TOKEN") or "").strip()
BLOB_TIMEOUT_SECONDS = parse_int(os.environ.get("LEMON_BLOB_TIMEOUT_SECONDS"), 30, minimum=1)
BLOB_CHUNK_SIZE = 64 * 1024

S3_ENDPOINT = (os.environ.get("LEMON_S3_ENDPOINT") or "").strip() or None
S3_BUCKET = (os.environ.get("LEMON_S3_BUCKET") or "").strip()
S3_ACCESS_KEY_ID = (os.environ.get("LEMON_S3_ACCESS_KEY_ID") or "").strip() or None
S3_SECRET_ACCESS_KEY = (os.environ.get("LEMON_S3_SECRET_ACCESS_KEY") or "").strip() or None
S3_REGION = (os.environ.get("LEMON_S3_REGION") or "auto").strip() or "auto"
S3_PUBLIC_BASE_URL = (os.environ.get("LEMON_S3_PUBLIC_BASE_URL") or "").strip().rstrip("/")


class BlobError(RuntimeError):
    pass


class BlobConfigError(BlobError):
    pass


@dataclass(frozen=True)
class StoredBlob:
    url: str
    pathname: str


class BlobStream:
    """Upstream bytes plus the bits of metadata the download gateway forwards."""

    def __init__(
        self,
        chunks: Iterator[bytes],
        *,
        content_type: str | None = None,
        content_length: int | None = None,
        closer: Callable[[], None] | None = None,
    ) -> None:
        self.content_type = content_type
        self.content_length = content_length
        self._chunks = chunks
        self._closer = closer
        self._closed = False

    def iter_chunks(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            if chunk:
                yield chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._closer is not None:
            self._closer()


class HttpBlobClient:
    """
    Client for a bearer-token object store HTTP API.

    Objects are written with ``PUT {api}/{pathname}``, removed with
    ``POST {api}/delete`` and read back from their URL. Private reads send the
    same bearer token, so without a token only public reads work.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        token: str | None = None,
        timeout: int = BLOB_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = (api_url or BLOB_API_URL).rstrip("/")
        self.token = BLOB_READ_WRITE_TOKEN if token is None else token
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def can_write(self) -> bool:
        return bool(self.token)

    @property
    def can_read_private(self) -> bool:
        return bool(self.token)

    def _auth_headers(self) -> dict:
        if not self.token:
            raise BlobConfigError("Blob storage token is not configured.")
        return {"Authorization": f"Bearer {self.token}"}

    def put(self, pathname: str, data: bytes, content_type: str) -> StoredBlob:
        headers = self._auth_headers()
        headers.update(
            {
                "x-content-type": content_type,
                "x-add-random-suffix": "0",
                "x-access": "public",
            }
        )
        url = f"{self.api_url}/{quote(pathname, safe='/')}"
        try:
            resp = self._session.put(url, data=data, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise BlobError(f"Blob upload failed: {exc}") from exc

        if not isinstance(payload, dict) or not payload.get("url"):
            raise BlobError("Blob upload returned no URL")
        return StoredBlob(url=str(payload["url"]), pathname=str(payload.get("pathname") or pathname))

    def delete(self, blob: StoredBlob) -> None:
        headers = self._auth_headers()
        try:
            resp = self._session.post(
                f"{self.api_url}/delete",
                json={"urls": [blob.url]},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise BlobError(f"Blob delete failed: {exc}") from exc

    def open(self, blob: StoredBlob, *, private: bool) -> BlobStream:
        # Public objects are readable anonymously; private ones need the token.
        headers = self._auth_headers() if private or self.token else {}
        # Content-Length is forwarded only when it describes the bytes we stream.
        headers["Accept-Encoding"] = "identity"
        try:
            resp = self._session.get(blob.url, headers=headers, stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            raise BlobError(f"Blob fetch failed: {exc}") from exc

        if not resp.ok:
            resp.close()
            raise BlobError(f"Blob fetch failed with status {resp.status_code}")

        length = None if resp.headers.get("Content-Encoding") else resp.headers.get("Content-Length")
        return BlobStream(
            resp.iter_content(chunk_size=BLOB_CHUNK_SIZE),
            content_type=resp.headers.get("Content-Type"),
            content_length=int(length) if length and length.isdigit() else None,
            closer=resp.close,
        )


class S3BlobClient:
    """Any S3-compatible bucket; objects are written public-read."""

    def __init__(
        self,
        *,
        bucket: str | None = None,
        public_base_url: str | None = None,
        client=None,
    ) -> None:
        self.bucket = bucket if bucket is not None else S3_BUCKET
        self.public_base_url = (
            public_base_url if public_base_url is not None else S3_PUBLIC_BASE_URL
        ).rstrip("/")
        self._client = client

    @property
    def can_write(self) -> bool:
        return bool(self.bucket)

    @property
    def can_read_private(self) -> bool:
        return bool(self.bucket)

    def _s3(self):
        if not self.bucket:
            raise BlobConfigError("S3 bucket is not configured.")
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=S3_ENDPOINT,
                aws_access_key_id=S3_ACCESS_KEY_ID,
                aws_secret_access_key=S3_SECRET_ACCESS_KEY,
                region_name=S3_REGION,
                config=BotoConfig(
                    signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}
                ),
            )
        return self._client

    def _public_url(self, pathname: str) -> str:
        key = quote(pathname, safe="/")
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def put(self, pathname: str, data: bytes, content_type: str) -> StoredBlob:
        client = self._s3()
        try:
            client.put_object(
                Bucket=self.bucket,
                Key=pathname,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobError(f"Blob upload failed: {exc}") from exc
        return StoredBlob(url=self._public_url(pathname), pathname=pathname)

    def delete(self, blob: StoredBlob) -> None:
        client = self._s3()
        try:
            client.delete_object(Bucket=self.bucket, Key=blob.pathname)
        except (BotoCoreError, ClientError) as exc:
            raise BlobError(f"Blob delete failed: {exc}") from exc

    def open(self, blob: StoredBlob, *, private: bool) -> BlobStream:
        client = self._s3()
        try:
            obj = client.get_object(Bucket=self.bucket, Key=blob.pathname)
        except (BotoCoreError, ClientError) as exc:
            raise BlobError(f"Blob fetch failed: {exc}") from exc

        body = obj["Body"]
        return BlobStream(
            body.iter_chunks(chunk_size=BLOB_CHUNK_SIZE),
            content_type=obj.get("ContentType"),
            content_length=obj.get("ContentLength"),
            closer=body.close,
        )


def build_blob_client():
    if BLOB_BACKEND == "s3":
        return S3BlobClient()
    if BLOB_BACKEND != "http":
        logger.warning("Unknown LEMON_BLOB_BACKEND %r, using http", BLOB_BACKEND)
    return HttpBlobClient()

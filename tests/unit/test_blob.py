from __future__ import annotations

import gzip
from unittest.mock import MagicMock, patch

import pytest
import requests_mock
from botocore.exceptions import ClientError

from lemon.services import blob as blob_service
from lemon.services.blob import (
    BlobConfigError,
    BlobError,
    HttpBlobClient,
    S3BlobClient,
    StoredBlob,
)


def _client(token="tok"):
    return HttpBlobClient(api_url="https://blob.test/", token=token)


def test_http_put_sends_bearer_and_returns_url():
    client = _client()
    with requests_mock.Mocker() as m:
        m.put(
            "https://blob.test/owner/abc.png",
            json={"url": "https://cdn.test/owner/abc.png", "pathname": "owner/abc.png"},
        )
        stored = client.put("owner/abc.png", b"data", "image/png")

        assert stored == StoredBlob(url="https://cdn.test/owner/abc.png", pathname="owner/abc.png")
        sent = m.request_history[0]
        assert sent.headers["Authorization"] == "Bearer tok"
        assert sent.headers["x-content-type"] == "image/png"
        assert sent.body == b"data"


def test_http_put_failures():
    client = _client()
    with requests_mock.Mocker() as m:
        m.put("https://blob.test/a.png", status_code=500)
        with pytest.raises(BlobError):
            client.put("a.png", b"x", "image/png")

        m.put("https://blob.test/a.png", text="not json")
        with pytest.raises(BlobError):
            client.put("a.png", b"x", "image/png")

        m.put("https://blob.test/a.png", json={"pathname": "a.png"})
        with pytest.raises(BlobError, match="no URL"):
            client.put("a.png", b"x", "image/png")


def test_http_without_token_is_a_config_error():
    client = _client(token="")
    assert client.can_write is False
    assert client.can_read_private is False
    with pytest.raises(BlobConfigError):
        client.put("a.png", b"x", "image/png")
    with pytest.raises(BlobConfigError):
        client.delete(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"))


def test_http_delete_posts_url_list():
    client = _client()
    with requests_mock.Mocker() as m:
        m.post("https://blob.test/delete", json={})
        client.delete(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"))
        assert m.request_history[0].json() == {"urls": ["https://cdn.test/a.png"]}

        m.post("https://blob.test/delete", status_code=503)
        with pytest.raises(BlobError):
            client.delete(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"))


def test_http_open_streams_body_and_metadata():
    client = _client()
    with requests_mock.Mocker() as m:
        m.get(
            "https://cdn.test/a.png",
            content=b"png-bytes",
            headers={"Content-Type": "image/png", "Content-Length": "9"},
        )
        stream = client.open(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"), private=True)
        assert b"".join(stream.iter_chunks()) == b"png-bytes"
        assert stream.content_type == "image/png"
        assert stream.content_length == 9
        assert m.request_history[0].headers["Authorization"] == "Bearer tok"
        stream.close()
        stream.close()


def test_http_open_drops_length_of_encoded_body():
    client = _client()
    body = b"lemon " * 1000
    compressed = gzip.compress(body)
    with requests_mock.Mocker() as m:
        m.get(
            "https://cdn.test/notes.txt",
            content=compressed,
            headers={
                "Content-Type": "text/plain",
                "Content-Encoding": "gzip",
                "Content-Length": str(len(compressed)),
            },
        )
        stream = client.open(StoredBlob(url="https://cdn.test/notes.txt", pathname="notes.txt"), private=True)

        assert m.request_history[0].headers["Accept-Encoding"] == "identity"
        assert stream.content_length is None
        assert b"".join(stream.iter_chunks()) == body


def test_http_open_public_without_token_is_anonymous():
    client = _client(token="")
    with requests_mock.Mocker() as m:
        m.get("https://cdn.test/a.png", content=b"x")
        client.open(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"), private=False)
        assert "Authorization" not in m.request_history[0].headers

        with pytest.raises(BlobConfigError):
            client.open(StoredBlob(url="https://cdn.test/a.png", pathname="a.png"), private=True)


def test_http_open_upstream_error():
    client = _client()
    with requests_mock.Mocker() as m:
        m.get("https://cdn.test/missing.png", status_code=404)
        with pytest.raises(BlobError, match="404"):
            client.open(StoredBlob(url="https://cdn.test/missing.png", pathname="missing.png"), private=False)


def _s3_error(operation):
    return ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)


def test_s3_put_writes_public_object():
    s3 = MagicMock()
    client = S3BlobClient(bucket="media", public_base_url="https://files.test/", client=s3)
    stored = client.put("owner/a b.png", b"data", "image/png")

    s3.put_object.assert_called_once_with(
        Bucket="media", Key="owner/a b.png", Body=b"data", ContentType="image/png", ACL="public-read"
    )
    assert stored.url == "https://files.test/owner/a%20b.png"
    assert stored.pathname == "owner/a b.png"


def test_s3_default_public_url():
    client = S3BlobClient(bucket="media", public_base_url="", client=MagicMock())
    assert client.put("k.png", b"x", "image/png").url == "https://media.s3.amazonaws.com/k.png"


def test_s3_errors_become_blob_errors():
    s3 = MagicMock()
    s3.put_object.side_effect = _s3_error("PutObject")
    s3.delete_object.side_effect = _s3_error("DeleteObject")
    s3.get_object.side_effect = _s3_error("GetObject")
    client = S3BlobClient(bucket="media", public_base_url="", client=s3)
    blob = StoredBlob(url="u", pathname="k.png")

    with pytest.raises(BlobError):
        client.put("k.png", b"x", "image/png")
    with pytest.raises(BlobError):
        client.delete(blob)
    with pytest.raises(BlobError):
        client.open(blob, private=True)


def test_s3_open_and_delete():
    body = MagicMock()
    body.iter_chunks.return_value = iter([b"ab", b"", b"cd"])
    s3 = MagicMock()
    s3.get_object.return_value = {"Body": body, "ContentType": "image/png", "ContentLength": 4}
    client = S3BlobClient(bucket="media", public_base_url="", client=s3)

    stream = client.open(StoredBlob(url="u", pathname="k.png"), private=True)
    assert b"".join(stream.iter_chunks()) == b"abcd"
    assert stream.content_length == 4
    stream.close()
    body.close.assert_called_once()

    client.delete(StoredBlob(url="u", pathname="k.png"))
    s3.delete_object.assert_called_once_with(Bucket="media", Key="k.png")


def test_s3_without_bucket_is_a_config_error():
    client = S3BlobClient(bucket="", public_base_url="")
    assert client.can_write is False
    with pytest.raises(BlobConfigError):
        client.put("k.png", b"x", "image/png")


def test_build_blob_client_selects_backend():
    with patch.object(blob_service, "BLOB_BACKEND", "s3"):
        assert isinstance(blob_service.build_blob_client(), S3BlobClient)
    with patch.object(blob_service, "BLOB_BACKEND", "http"):
        assert isinstance(blob_service.build_blob_client(), HttpBlobClient)
    with patch.object(blob_service, "BLOB_BACKEND", "ftp"):
        assert isinstance(blob_service.build_blob_client(), HttpBlobClient)

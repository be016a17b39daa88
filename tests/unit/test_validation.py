import io

import pytest

from lemon.config import parse_bool, parse_int
from lemon.utils import validation as validation_utils
from lemon.utils.validation import UploadValidationError


def test_parse_bool():
    assert parse_bool(True) is True
    assert parse_bool(False) is False
    assert parse_bool("true") is True
    assert parse_bool("1") is True
    assert parse_bool(" yes ") is True
    assert parse_bool("no") is False
    assert parse_bool("") is False
    assert parse_bool(None) is False


def test_parse_int():
    assert parse_int("42", 1) == 42
    assert parse_int(" 7 ", 1) == 7
    assert parse_int("nope", 5) == 5
    assert parse_int(None, 5) == 5
    assert parse_int("0", 5, minimum=1) == 1


def test_object_id_validation():
    assert validation_utils.is_valid_object_id("a" * 24) is True
    assert validation_utils.is_valid_object_id("0123456789abcdef01234567") is True
    assert validation_utils.is_valid_object_id("A" * 24) is True
    assert validation_utils.is_valid_object_id("a" * 23) is False
    assert validation_utils.is_valid_object_id("g" * 24) is False
    assert validation_utils.is_valid_object_id("") is False
    assert validation_utils.is_valid_object_id(None) is False


def test_sanitize_filename_replaces_unsafe_characters():
    sanitize = validation_utils.sanitize_filename
    assert sanitize("My Report (final).PDF") == "My_Report__final_.PDF"
    assert sanitize("ok-name_1.png") == "ok-name_1.png"
    assert sanitize("../../etc/passwd") == "passwd"
    assert sanitize("C:\\Users\\me\\shot.png") == "shot.png"
    assert sanitize("émoji🍋.gif") == "_moji_.gif"
    assert sanitize("") == "upload"
    assert sanitize(None) == "upload"


def test_sanitize_filename_caps_length_and_keeps_extension():
    name = validation_utils.sanitize_filename("a" * 200 + ".png")
    assert len(name) == validation_utils.MAX_FILENAME_LENGTH
    assert name.endswith(".png")

    no_ext = validation_utils.sanitize_filename("b" * 300)
    assert no_ext == "b" * validation_utils.MAX_FILENAME_LENGTH


def test_extract_extension():
    ext = validation_utils._extract_extension
    assert ext("shot.PNG") == "png"
    assert ext("archive.tar.gz") == "gz"
    assert ext("README") == "bin"
    assert ext("trailing.") == "bin"
    assert ext("weird.ext_with_underscore") == "bin"
    assert ext("x." + "a" * 17) == "bin"
    assert ext(None) == "bin"


def test_safe_header_filename():
    assert validation_utils.safe_header_filename('a"b\r\n/c\\d.png') == "ab_c_d.png"
    assert validation_utils.safe_header_filename("") == "download"
    assert validation_utils.safe_header_filename(None) == "download"
    assert len(validation_utils.safe_header_filename("x" * 400)) == validation_utils.MAX_HEADER_FILENAME_LENGTH


def test_normalize_ip():
    normalize = validation_utils._normalize_ip
    assert normalize("203.0.113.9") == "203.0.113.9"
    assert normalize("203.0.113.9:8080") == "203.0.113.9"
    assert normalize("[::1]:443") == "::1"
    assert normalize("198.51.100.1, 10.0.0.1") == "198.51.100.1"
    assert normalize("not-an-ip") is None
    assert normalize(None) is None


def test_sniff_mime_type():
    sniff = validation_utils._sniff_mime_type
    assert sniff(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert sniff(b"\x89PNG\r\n\x1a\n") == "image/png"
    assert sniff(b"GIF89a....") == "image/gif"
    assert sniff(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff(b"%PDF-1.7") == "application/pdf"
    assert sniff(b"\x00\x00\x00\x18ftypmp42") == "video/mp4"
    assert sniff(b"plain text") is None
    assert sniff(b"") is None


def test_detect_content_type_prefers_declared_then_magic_then_extension():
    detect = validation_utils._detect_content_type
    assert detect("image/png; charset=binary", b"", "x.bin") == "image/png"
    assert detect("application/octet-stream", b"\x89PNG\r\n\x1a\n", "x.bin") == "image/png"
    assert detect(None, b"hello", "notes.txt") == "text/plain"
    assert detect(None, b"hello", "blob.zzz") == "application/octet-stream"


def test_read_with_limit():
    assert validation_utils._read_with_limit(io.BytesIO(b"x" * 10), 10, chunk_size=3) == b"x" * 10

    with pytest.raises(UploadValidationError) as excinfo:
        validation_utils._read_with_limit(io.BytesIO(b"x" * 11), 10, chunk_size=4, message="too big")
    assert excinfo.value.status_code == 413
    assert str(excinfo.value) == "too big"

import io
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
import responses

from stratus.config import Config
from stratus.s3 import MissingConfigError, S3Error, S3Storage, storage_from_config
from stratus.storage import ObjectNotFoundError, PutObjectOptions

BASE = "http://s3.example.com/bucket"


def make_store(**kw):
    kw.setdefault("use_ssl", False)
    kw.setdefault("path_style", True)
    return S3Storage("s3.example.com", "placeholder", "secret", "us-east-1", **kw)


def test_stat_object():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.HEAD, f"{BASE}/ns/repo/index.json", headers={"Content-Length": "10", "ETag": '"e1"'})
        info = make_store().stat_object("bucket", "ns/repo/index.json")
        assert info.content_length == 10
        assert info.etag == '"e1"'
        auth = rsps.calls[0].request.headers["Authorization"]
        assert auth.startswith("AWS4-HMAC-SHA256 Credential=placeholder/")


def test_stat_missing():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.HEAD, f"{BASE}/k", status=404)
        with pytest.raises(ObjectNotFoundError):
            make_store().stat_object("bucket", "k")


def test_get_missing_by_code():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{BASE}/k", status=400, body="<Error><Code>NoSuchKey</Code></Error>")
        with pytest.raises(ObjectNotFoundError):
            make_store().get_object("bucket", "k")


def test_other_error_kept():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{BASE}/k", status=403, body="<Error><Code>AccessDenied</Code></Error>")
        with pytest.raises(S3Error) as exc:
            make_store().get_object("bucket", "k")
        assert exc.value.code == "AccessDenied"


def test_put_then_get_round_trip():
    stored = {}

    def on_put(request):
        stored["body"] = request.body
        stored["headers"] = request.headers
        return (200, {}, "")

    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.PUT, f"{BASE}/a/b", callback=on_put)
        store = make_store()
        store.put_object(
            "bucket", "a/b", io.BytesIO(b"payload"), 7,
            PutObjectOptions(content_type="application/json", cache_control="no-cache"),
        )
        assert stored["headers"]["Content-Type"] == "application/json"
        assert stored["headers"]["Cache-Control"] == "no-cache"

        rsps.add(responses.GET, f"{BASE}/a/b", body=stored["body"], headers={"ETag": '"x"'})
        body, info = store.get_object("bucket", "a/b")
        assert body.read() == b"payload"
        assert info.etag == '"x"'


def test_virtual_host_style():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.HEAD, "https://bucket.s3.example.com/k", headers={"Content-Length": "3"})
        info = make_store(use_ssl=True, path_style=False).stat_object("bucket", "k")
        assert info.content_length == 3


def test_presign_contains_signature():
    url = make_store().presign_get_object("bucket", "ns/repo/blobs/sha256/abc", timedelta(seconds=600))
    parsed = urlparse(url)
    assert parsed.path == "/bucket/ns/repo/blobs/sha256/abc"
    q = parse_qs(parsed.query)
    assert q["X-Amz-Expires"] == ["600"]
    assert q["X-Amz-SignedHeaders"] == ["host"]
    assert len(q["X-Amz-Signature"][0]) == 64


def test_storage_from_config_missing():
    with pytest.raises(MissingConfigError):
        storage_from_config(Config(s3_endpoint="s3.example.com", s3_access_key_id="placeholder"))


def test_storage_from_config_carries_options():
    store = storage_from_config(
        Config(
            s3_endpoint="s3.example.com", s3_access_key_id="placeholder", s3_secret_key="secret",
            s3_path_style=True, s3_multipart_upload_concurrency=8,
        )
    )
    assert store.path_style is True
    assert store.use_ssl is False
    assert store.multipart_upload_concurrency == 8
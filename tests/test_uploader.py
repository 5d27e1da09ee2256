import io
import threading
from datetime import timedelta

import pytest

from stratus.registry import OciManifest, OciManifestIndex
from stratus.storage import ObjectInfo, ObjectNotFoundError, Storage
from stratus.uploader import (
    CACHE_CONTROL_NO_CACHE,
    CACHE_CONTROL_PUBLIC_IMMUTABLE,
    FSUploadObject,
    JSONUploadObject,
    SkipResult,
    UploadError,
    UploadTask,
    upload_tasks_concurrently,
    upload_with_retry,
)


class MockStorage(Storage):
    def __init__(self, fail_count=0, existing_keys=None):
        self.lock = threading.Lock()
        self.put_calls = []
        self.fail_count = fail_count
        self.existing_keys = set(existing_keys or ())
        self.objects = {}

    @property
    def put_attempts(self):
        with self.lock:
            return len(self.put_calls)

    def last_put(self):
        with self.lock:
            return self.put_calls[-1] if self.put_calls else None

    def stat_object(self, bucket, key):
        with self.lock:
            if key in self.existing_keys:
                return ObjectInfo(content_length=1)
            if key in self.objects:
                return ObjectInfo(content_length=len(self.objects[key]))
        raise ObjectNotFoundError()

    def get_object(self, bucket, key):
        with self.lock:
            if key in self.objects:
                return io.BytesIO(self.objects[key]), ObjectInfo(len(self.objects[key]))
        raise ObjectNotFoundError()

    def presign_get_object(self, bucket, key, expiry: timedelta):
        raise NotImplementedError("presign")

    def put_object(self, bucket, key, body, size, opts):
        data = body.read()
        with self.lock:
            self.put_calls.append({"key": key, "payload": data, "size": size, "opts": opts})
            attempt = len(self.put_calls)
            self.objects[key] = data
            self.existing_keys.add(key)
        if attempt <= self.fail_count:
            raise RuntimeError("synthetic failure")


def blob_skip(storage, bucket, key):
    try:
        storage.stat_object(bucket, key)
    except ObjectNotFoundError:
        return SkipResult()
    return SkipResult(skip=True, reason="layer already exists")


@pytest.fixture
def blob_dir(tmp_path):
    blobs = tmp_path / "blobs" / "sha256"
    blobs.mkdir(parents=True)
    (blobs / "d1").write_bytes(b"existing")
    (blobs / "d2").write_bytes(b"new layer")
    return tmp_path


def test_upload_with_retry_retries_until_success():
    obj = JSONUploadObject({"foo": "bar"}, "application/vnd.test+json", "test-json")
    mock = MockStorage(fail_count=1)
    sleeps = []

    upload_with_retry(mock, "test-bucket", "repo/index.json", obj, io.StringIO(), sleep=sleeps.append)

    assert mock.put_attempts == 2
    last = mock.last_put()
    assert last["key"] == "repo/index.json"
    assert last["opts"].content_type == "application/vnd.test+json"
    assert last["size"] == obj.size
    assert sleeps == [1]


def test_upload_with_retry_gives_up_after_three_attempts():
    obj = JSONUploadObject({"a": 1}, "", "x")
    mock = MockStorage(fail_count=10)
    sleeps = []
    out = io.StringIO()

    with pytest.raises(UploadError, match="upload failed after 3 attempts"):
        upload_with_retry(mock, "b", "repo/k", obj, out, sleep=sleeps.append)

    assert mock.put_attempts == 3
    assert sleeps == [1, 2]
    assert "attempt 3/3" in out.getvalue()


def test_upload_with_retry_rejects_none_object():
    with pytest.raises(UploadError, match="nil upload object for key repo/k"):
        upload_with_retry(MockStorage(), "b", "repo/k", None, io.StringIO())


def test_upload_with_retry_uses_key_basename_when_label_empty():
    obj = JSONUploadObject({"a": 1})
    out = io.StringIO()
    upload_with_retry(MockStorage(), "b", "repo/index.json", obj, out)
    assert "✅ index.json | Upload complete" in out.getvalue()


def test_json_upload_object_encoding_and_defaults():
    obj = JSONUploadObject({"foo": "bar"})
    assert obj.open().read() == b'{"foo":"bar"}'
    assert obj.size == 13
    assert obj.content_type == "application/json"
    assert obj.cache_control_for("any") == CACHE_CONTROL_NO_CACHE


def test_json_upload_object_from_index():
    index = OciManifestIndex(2, [OciManifest("m", "sha256:aaa", 1, {"k": "v"})])
    obj = JSONUploadObject(index, "application/vnd.oci.image.index.v1+json", "index.json")
    assert OciManifestIndex.from_json(obj.open().read()) == index


def test_json_upload_object_rejects_unserialisable():
    with pytest.raises(ValueError, match="marshal upload json"):
        JSONUploadObject({"x": object()})


def test_fs_upload_object_defaults(blob_dir):
    obj = FSUploadObject(blob_dir, "blobs/sha256/d2")
    assert obj.size == len(b"new layer")
    assert obj.content_type == "application/octet-stream"
    assert obj.cache_control_for("k") == CACHE_CONTROL_NO_CACHE
    assert obj.label == "d2"
    with obj.open() as fh:
        assert fh.read() == b"new layer"


def test_fs_upload_object_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FSUploadObject(tmp_path, "blobs/sha256/nope")


def test_upload_tasks_concurrently_handles_skip(blob_dir):
    obj1 = FSUploadObject(blob_dir, "blobs/sha256/d1", "application/octet-stream",
                          CACHE_CONTROL_PUBLIC_IMMUTABLE, "digest-1")
    obj2 = FSUploadObject(blob_dir, "blobs/sha256/d2", "application/octet-stream",
                          CACHE_CONTROL_PUBLIC_IMMUTABLE, "digest-2")
    mock = MockStorage(existing_keys={"repo/blobs/sha256/d1"})
    tasks = [
        UploadTask("repo/blobs/sha256/d1", obj1, blob_skip),
        UploadTask("repo/blobs/sha256/d2", obj2, blob_skip),
    ]
    out = io.StringIO()

    upload_tasks_concurrently(mock, "test-bucket", tasks, 2, out)

    assert mock.put_attempts == 1
    last = mock.last_put()
    assert last["key"].endswith("blobs/sha256/d2")
    assert last["payload"] == b"new layer"
    assert last["opts"].cache_control == CACHE_CONTROL_PUBLIC_IMMUTABLE
    assert "⏭️ digest-1 | layer already exists" in out.getvalue()
    assert "📊 Upload summary: 1 uploaded, 1 skipped" in out.getvalue()


def test_upload_tasks_concurrently_empty():
    out = io.StringIO()
    upload_tasks_concurrently(MockStorage(), "b", [], 2, out)
    assert out.getvalue() == "📭 No upload tasks supplied\n"


def test_upload_tasks_concurrently_default_skip_reason():
    obj = JSONUploadObject({"a": 1}, "", "lbl")
    out = io.StringIO()
    upload_tasks_concurrently(
        MockStorage(), "b", [UploadTask("k", obj, lambda s, b, k: SkipResult(skip=True))], 0, out
    )
    assert "⏭️ lbl | skip predicate satisfied" in out.getvalue()


def test_upload_tasks_concurrently_skip_check_error():
    def failing(storage, bucket, key):
        raise RuntimeError("boom")

    obj = JSONUploadObject({"a": 1}, "", "lbl")
    mock = MockStorage()
    with pytest.raises(UploadError, match="lbl \\| skip check: boom"):
        upload_tasks_concurrently(mock, "b", [UploadTask("k", obj, failing)], 1, io.StringIO())
    assert mock.put_attempts == 0
import datetime
import io

import fs.errors
import pytest

from gcs_api import ObjectRecord
from gcs_driver import GCSDriver, GCSDriverFactory, LocalSession


class MemoryApi:
    """In-memory stand-in for GCSApi, buckets are dicts of key -> bytes."""

    def __init__(self):
        self.buckets = {}
        self.calls = []
        # keys whose delete/copy fails, to exercise partial failures
        self.fail_delete = set()
        self.fail_copy = set()

    def _bucket(self, bucket):
        return self.buckets.setdefault(bucket, {})

    def put(self, bucket, key, content=b"", updated="2021-03-04T05:06:07.890Z"):
        self._bucket(bucket)[key] = (bytes(content), updated)

    def keys(self, bucket):
        return sorted(self._bucket(bucket))

    def content(self, bucket, key):
        return self._bucket(bucket)[key][0]

    def _record(self, bucket, key):
        content, updated = self._bucket(bucket)[key]
        return ObjectRecord(
            name=key,
            size=len(content),
            updated=updated,
            media_link=f"memory://{bucket}/{key}?alt=media",
            self_link=f"memory://{bucket}/{key}",
        )

    def get_object(self, bucket, key):
        self.calls.append(("get", bucket, key))
        if key not in self._bucket(bucket):
            raise fs.errors.ResourceNotFound(key)
        return self._record(bucket, key)

    def list_objects(self, bucket, prefix, max_results=None):
        self.calls.append(("list", bucket, prefix))
        keys = [key for key in self.keys(bucket) if key.startswith(prefix)]
        if max_results is not None:
            keys = keys[:max_results]
        return [self._record(bucket, key) for key in keys]

    def insert_object(self, bucket, key, data):
        self.calls.append(("insert", bucket, key))
        now = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.put(bucket, key, data.read(), updated=now)
        return self._record(bucket, key)

    def copy_object(self, bucket, src_key, dst_bucket, dst_key):
        self.calls.append(("copy", bucket, src_key, dst_key))
        if src_key in self.fail_copy:
            raise fs.errors.OperationFailed(src_key)
        if src_key not in self._bucket(bucket):
            raise fs.errors.ResourceNotFound(src_key)
        self._bucket(dst_bucket)[dst_key] = self._bucket(bucket)[src_key]
        return self._record(dst_bucket, dst_key)

    def delete_object(self, bucket, key):
        self.calls.append(("delete", bucket, key))
        if key in self.fail_delete:
            raise fs.errors.OperationFailed(key)
        if key not in self._bucket(bucket):
            raise fs.errors.ResourceNotFound(key)
        del self._bucket(bucket)[key]

    def open_media(self, record):
        bucket, key = record.media_link[len("memory://"):].split("?")[0].split("/", 1)
        return io.BytesIO(self.content(bucket, key))


@pytest.fixture
def api():
    return MemoryApi()


@pytest.fixture
def session():
    return LocalSession("alice")


@pytest.fixture
def driver(api, session):
    driver = GCSDriver("bucket", api)
    driver.init(session)
    return driver


@pytest.fixture
def factory(api):
    return GCSDriverFactory("bucket", lambda: api)

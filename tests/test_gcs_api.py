import io

import fs.errors
import pytest
import requests
from google.api_core import exceptions as google_exceptions

from gcs_api import GCSApi, ObjectRecord


def resource(name, content=b"", **fields):
    res = {
        "name": name,
        "size": str(len(content)),
        "updated": "2021-03-04T05:06:07.890Z",
        "mediaLink": f"https://storage.example/download/{name}?alt=media",
        "selfLink": f"https://storage.example/b/bucket/o/{name}",
    }
    res.update(fields)
    return res


class FakeBlob:
    def __init__(self, client, bucket, name):
        self.client = client
        self.bucket = bucket
        self.name = name
        self._properties = {"name": name}

    def upload_from_file(self, data):
        self.client.check("upload", self.bucket.name, self.name)
        content = data.read()
        self._properties = resource(self.name, content)
        self.client.objects[self.bucket.name, self.name] = self._properties


class FakeBucket:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def blob(self, key):
        return FakeBlob(self.client, self, key)

    def get_blob(self, key):
        self.client.check("get", self.name, key)
        properties = self.client.objects.get((self.name, key))
        if properties is None:
            return None
        blob = self.blob(key)
        blob._properties = properties
        return blob

    def copy_blob(self, blob, destination_bucket, new_name):
        self.client.check("copy", self.name, blob.name)
        properties = dict(self.client.objects[self.name, blob.name], name=new_name)
        self.client.objects[destination_bucket.name, new_name] = properties
        copy = destination_bucket.blob(new_name)
        copy._properties = properties
        return copy

    def delete_blob(self, key):
        self.client.check("delete", self.name, key)
        if self.client.objects.pop((self.name, key), None) is None:
            raise google_exceptions.NotFound(f"No such object: {self.name}/{key}")


class FakeClient:
    """Stands in for google.cloud.storage.Client"""

    def __init__(self):
        self.objects = {}
        self.errors = {}
        self.list_calls = []

    def check(self, op, bucket, key):
        error = self.errors.get(op)
        if error is not None:
            raise error

    def bucket(self, name):
        return FakeBucket(self, name)

    def list_blobs(self, bucket, prefix=None, max_results=None):
        self.list_calls.append((bucket, prefix, max_results))
        self.check("list", bucket, prefix)
        keys = sorted(key for b, key in self.objects if b == bucket and key.startswith(prefix or ""))
        if max_results is not None:
            keys = keys[:max_results]
        blobs = []
        for key in keys:
            blob = FakeBlob(self, self.bucket(bucket), key)
            blob._properties = self.objects[bucket, key]
            blobs.append(blob)
        return iter(blobs)


class RawStream(io.BytesIO):
    decode_content = True


class FakeResponse:
    def __init__(self, status_code, content=b"", text=""):
        self.status_code = status_code
        self.raw = RawStream(content)
        self.text = text
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for google.auth.transport.requests.AuthorizedSession"""

    def __init__(self):
        self.responses = []
        self.error = None
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append((url, stream, timeout))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def http_session():
    return FakeSession()


@pytest.fixture
def gcs(client, http_session):
    return GCSApi(client, http_session, timeout=5)


def test_record_from_resource():
    record = ObjectRecord.from_resource(resource("docs/a.txt", b"hello world!"))
    assert record.name == "docs/a.txt"
    assert record.size == 12
    assert record.updated == "2021-03-04T05:06:07.890Z"
    assert record.media_link.endswith("docs/a.txt?alt=media")
    assert record.self_link.endswith("/o/docs/a.txt")


def test_record_without_size():
    record = ObjectRecord.from_resource({"name": "docs/"})
    assert record.size == 0
    assert record.updated is None
    assert record.media_link is None


def test_get_object(gcs, client):
    client.objects["bucket", "a.txt"] = resource("a.txt", b"abc")
    record = gcs.get_object("bucket", "a.txt")
    assert record.name == "a.txt"
    assert record.size == 3


def test_get_missing_object(gcs):
    with pytest.raises(fs.errors.ResourceNotFound) as excinfo:
        gcs.get_object("bucket", "missing.txt")
    assert excinfo.value.path == "missing.txt"


def test_not_found_becomes_resource_not_found(gcs, client):
    client.errors["get"] = google_exceptions.NotFound("No such bucket: bucket")
    with pytest.raises(fs.errors.ResourceNotFound) as excinfo:
        gcs.get_object("bucket", "a.txt")
    assert excinfo.value.path == "a.txt"
    assert isinstance(excinfo.value.exc, google_exceptions.NotFound)


def test_api_errors_become_operation_failed(gcs, client):
    client.errors["upload"] = google_exceptions.Forbidden("quota exceeded")
    with pytest.raises(fs.errors.OperationFailed) as excinfo:
        gcs.insert_object("bucket", "a.txt", io.BytesIO(b"abc"))
    assert not isinstance(excinfo.value, fs.errors.RemoteConnectionError)
    assert "quota exceeded" in str(excinfo.value)
    assert "'a.txt'" in str(excinfo.value)


def test_server_errors_become_operation_failed(gcs, client):
    client.errors["list"] = google_exceptions.InternalServerError("backend error")
    with pytest.raises(fs.errors.OperationFailed):
        gcs.list_objects("bucket", "docs/")


def test_connection_errors_become_remote_connection_error(gcs, client):
    client.errors["delete"] = requests.exceptions.ConnectionError("connection reset")
    with pytest.raises(fs.errors.RemoteConnectionError) as excinfo:
        gcs.delete_object("bucket", "a.txt")
    assert "connection reset" in str(excinfo.value)


def test_other_errors_pass_through(gcs, client):
    client.errors["get"] = KeyError("bug")
    with pytest.raises(KeyError):
        gcs.get_object("bucket", "a.txt")


def test_list_objects(gcs, client):
    for key in ("docs/a.txt", "docs/b.txt", "photos/c.jpg"):
        client.objects["bucket", key] = resource(key, b"x")
    records = gcs.list_objects("bucket", "docs/")
    assert [r.name for r in records] == ["docs/a.txt", "docs/b.txt"]
    assert all(r.size == 1 for r in records)
    assert client.list_calls == [("bucket", "docs/", None)]


def test_list_objects_root_and_limit(gcs, client):
    for key in ("docs/a.txt", "photos/c.jpg"):
        client.objects["bucket", key] = resource(key)
    assert len(gcs.list_objects("bucket", "", max_results=1)) == 1
    assert client.list_calls == [("bucket", None, 1)]


def test_insert_object(gcs, client):
    record = gcs.insert_object("bucket", "notes/today.txt", io.BytesIO(b"hello"))
    assert record.name == "notes/today.txt"
    assert record.size == 5
    assert ("bucket", "notes/today.txt") in client.objects


def test_copy_object(gcs, client):
    client.objects["src", "a.txt"] = resource("a.txt", b"abc")
    record = gcs.copy_object("src", "a.txt", "dst", "b/a.txt")
    assert record.name == "b/a.txt"
    assert record.size == 3
    assert ("dst", "b/a.txt") in client.objects
    assert ("src", "a.txt") in client.objects


def test_copy_missing_object(gcs, client):
    client.errors["copy"] = google_exceptions.NotFound("No such object")
    with pytest.raises(fs.errors.ResourceNotFound) as excinfo:
        gcs.copy_object("bucket", "a.txt", "bucket", "b.txt")
    assert excinfo.value.path == "a.txt"


def test_delete_missing_object(gcs):
    with pytest.raises(fs.errors.ResourceNotFound):
        gcs.delete_object("bucket", "missing.txt")


def test_open_media(gcs, http_session):
    record = ObjectRecord.from_resource(resource("a.txt", b"abc"))
    http_session.responses.append(FakeResponse(200, b"abc"))
    stream = gcs.open_media(record)
    assert stream.read() == b"abc"
    assert stream.decode_content is False
    assert http_session.calls == [(record.media_link, True, 5)]


def test_open_media_not_found(gcs, http_session):
    response = FakeResponse(404, text="No such object")
    http_session.responses.append(response)
    with pytest.raises(fs.errors.ResourceNotFound) as excinfo:
        gcs.open_media(ObjectRecord.from_resource(resource("a.txt")))
    assert excinfo.value.path == "a.txt"
    assert response.closed


def test_open_media_refused(gcs, http_session):
    response = FakeResponse(403, text="Access denied.")
    http_session.responses.append(response)
    with pytest.raises(fs.errors.OperationFailed, match="Access denied"):
        gcs.open_media(ObjectRecord.from_resource(resource("a.txt")))
    assert response.closed


def test_open_media_connection_error(gcs, http_session):
    http_session.error = requests.exceptions.Timeout("read timed out")
    with pytest.raises(fs.errors.RemoteConnectionError):
        gcs.open_media(ObjectRecord.from_resource(resource("a.txt")))

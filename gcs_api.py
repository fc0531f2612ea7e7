import logging
from collections import namedtuple
from functools import wraps

import fs.errors
import requests
from google.api_core import exceptions as google_exceptions
from google.auth.transport.requests import AuthorizedSession
from google.cloud import storage
from google.oauth2 import service_account


log = logging.getLogger(__name__)

scope = "https://www.googleapis.com/auth/devstorage.full_control"


class ObjectRecord(namedtuple("ObjectRecord", "name size updated media_link self_link")):
    """
    The part of a storage object resource the FTP side consumes

    Attributes:
        name (str): The object key
        size (int): Declared byte length
        updated (str): RFC 3339 update timestamp, as sent by the server
        media_link (str): Direct media download reference
        self_link (str): API reference of the object
    """

    __slots__ = ()

    @classmethod
    def from_resource(cls, resource):
        """
        Build a record from a JSON API object resource

        Args:
            resource (dict): The object resource, e.g. ``{"name": "a.txt", "size": "3", ...}``
        """
        return cls(
            name=resource.get("name", ""),
            size=int(resource.get("size") or 0),
            updated=resource.get("updated"),
            media_link=resource.get("mediaLink"),
            self_link=resource.get("selfLink"),
        )

    @classmethod
    def from_blob(cls, blob):
        # Private attribute: Blob._properties is the JSON resource as
        # received, "updated" still an RFC 3339 string. Blob.updated is
        # already parsed by the client library.
        return cls.from_resource(blob._properties)


def report_storage_errors(func):
    """Decorator translating storage client errors into fs.errors exceptions.

    The first positional argument after the bucket is used as the path of
    the error, so that a missing object is reported under its key.
    """
    @wraps(func)
    def wrapper(self, bucket, *args, **kwds):
        path = args[0] if args and isinstance(args[0], str) else bucket
        try:
            return func(self, bucket, *args, **kwds)
        except google_exceptions.NotFound as e:
            raise fs.errors.ResourceNotFound(path, exc=e)
        except google_exceptions.GoogleAPICallError as e:
            raise fs.errors.OperationFailed(path, exc=e, msg=f"storage request failed for '{path}': {e}")
        except requests.exceptions.RequestException as e:
            raise fs.errors.RemoteConnectionError(path, exc=e, msg=f"connection to storage failed: {e}")
    return wrapper


class GCSApi:
    """
    Flat key operations against Google Cloud Storage buckets

    Attributes:
        client (google.cloud.storage.Client): The storage client
        session (google.auth.transport.requests.AuthorizedSession): HTTP session used for media downloads
        timeout (float): Timeout in seconds for media downloads

    Methods:
        get_object: Look up one object
        list_objects: List every object under a prefix
        insert_object: Upload an object, overwriting
        copy_object: Copy an object
        delete_object: Delete an object
        open_media: Stream the content of an object
    """

    def __init__(self, client, session, timeout=60):
        self.client = client
        self.session = session
        self.timeout = timeout

    @classmethod
    def from_service_account_info(cls, info, **kwargs):
        """
        Create a GCSApi authenticated with a service account

        Args:
            info (dict): The parsed service account file
            **kwargs: Passed to the constructor

        Returns:
            GCSApi: The api object
        """
        credentials = service_account.Credentials.from_service_account_info(info, scopes=[scope])
        client = storage.Client(project=info.get("project_id"), credentials=credentials)
        log.info("Created storage service for %s", info.get("client_email"))
        return cls(client, AuthorizedSession(credentials), **kwargs)

    @report_storage_errors
    def get_object(self, bucket, key):
        """
        Look up one object

        Raises:
            fs.errors.ResourceNotFound: If there is no object at ``key``
        """
        blob = self.client.bucket(bucket).get_blob(key)
        if blob is None:
            raise fs.errors.ResourceNotFound(key)
        return ObjectRecord.from_blob(blob)

    @report_storage_errors
    def list_objects(self, bucket, prefix, max_results=None):
        """
        List every object whose key starts with ``prefix``

        Args:
            bucket (str): The bucket name
            prefix (str): The key prefix, may be empty
            max_results (int): Stop after this many objects

        Returns:
            list: ObjectRecord items in key order
        """
        blobs = self.client.list_blobs(bucket, prefix=prefix or None, max_results=max_results)
        return [ObjectRecord.from_blob(blob) for blob in blobs]

    @report_storage_errors
    def insert_object(self, bucket, key, data):
        blob = self.client.bucket(bucket).blob(key)
        blob.upload_from_file(data)
        return ObjectRecord.from_blob(blob)

    @report_storage_errors
    def copy_object(self, bucket, src_key, dst_bucket, dst_key):
        src = self.client.bucket(bucket)
        dst = self.client.bucket(dst_bucket)
        blob = src.copy_blob(src.blob(src_key), dst, dst_key)
        return ObjectRecord.from_blob(blob)

    @report_storage_errors
    def delete_object(self, bucket, key):
        self.client.bucket(bucket).delete_blob(key)

    def open_media(self, record):
        """
        Start a streaming download of an object

        Args:
            record (ObjectRecord): The object, as returned by get_object

        Returns:
            A file-like object yielding the stored bytes

        Raises:
            fs.errors.ResourceNotFound: If the object vanished
            fs.errors.OperationFailed: If the download was refused
        """
        try:
            resp = self.session.get(record.media_link, stream=True, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise fs.errors.RemoteConnectionError(record.name, exc=e, msg=f"connection to storage failed: {e}")
        if resp.status_code == 404:
            resp.close()
            raise fs.errors.ResourceNotFound(record.name)
        if resp.status_code != 200:
            detail = resp.text
            resp.close()
            raise fs.errors.OperationFailed(record.name, msg=f"Error downloading '{record.name}' : {detail}")
        # stored bytes, even for gzip-encoded objects
        resp.raw.decode_content = False
        return resp.raw

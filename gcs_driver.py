import io
import logging
from collections import namedtuple
from functools import partial

import fs.errors

from gcs_api import GCSApi
from gcs_fileinfo import FileInfo


log = logging.getLogger(__name__)

# Resolved once per operation, never kept between calls.
DriverContext = namedtuple("DriverContext", "bucket user")


class LocalSession:
    """A session for callers that are not FTP connections, e.g. the CLI."""

    def __init__(self, username):
        self.username = username


def path_to_key(path):
    """
    Convert an FTP path into an object key

    Args:
        path (str): An absolute or relative FTP path, e.g. ``/photos/a.jpg``

    Returns:
        str: The key, without leading separator, e.g. ``photos/a.jpg``
    """
    return path.lstrip("/")


def dir_prefix(path):
    """
    Convert an FTP directory path into the key prefix of its content

    Returns:
        str: ``""`` for the root, otherwise the key with one trailing ``/``
    """
    key = path.strip("/")
    return key + "/" if key else ""


def is_directory(api, bucket, key):
    """
    Tell whether ``key`` names a directory, i.e. anything is stored below it

    Args:
        api (GCSApi): The backend
        bucket (str): The bucket name
        key (str): The key to test, with or without trailing separator

    Returns:
        bool: True when at least one object key starts with ``key + "/"``
    """
    prefix = dir_prefix(key)
    if not prefix:
        return True
    return len(api.list_objects(bucket, prefix, max_results=1)) > 0


class GCSDriver:
    """
    Directory semantics on top of a flat object namespace

    One driver serves one FTP session. The bucket is resolved again for
    every operation from the configuration and the session's current user.

    Attributes:
        bucket (str): The configured bucket name
        bucket_per_user (bool): Use one bucket per login user
        api (GCSApi): The backend
        session: The session, anything with a ``username`` attribute
        cur_dir (str): Last directory entered with change_dir

    Methods:
        init: Attach the session
        stat: Get the metadata of a path
        change_dir: Enter a directory
        list_dir: Visit the entries of a directory
        scandir: Iterate over the entries of a directory
        delete_dir: Delete every object under a directory
        delete_file: Delete one object
        make_dir: Create a directory placeholder
        rename: Move a file or a whole directory
        get_file: Open an object for reading
        put_file: Write an object
    """

    def __init__(self, bucket, api, bucket_per_user=False):
        self.cur_dir = "/"
        self.bucket = bucket
        self.bucket_per_user = bucket_per_user
        self.api = api
        self.session = None

    def init(self, session):
        """Store the session to keep access to values like the logged in user"""
        self.session = session

    def context(self):
        # type: () -> DriverContext
        """Resolve the bucket and the user for the operation about to run."""
        if self.session is None:
            raise RuntimeError("driver used before init()")
        user = self.session.username
        if self.bucket_per_user:
            return DriverContext(f"{self.bucket}-{user}", user)
        return DriverContext(self.bucket, user)

    def stat(self, path):
        """
        Get the metadata of a path

        Paths ending with a separator are directories without further
        check. Otherwise the object at the key is looked up, and when
        there is none the path is a directory if anything is stored below it.

        Args:
            path (str): The FTP path

        Returns:
            FileInfo: The entry, named after ``path``

        Raises:
            fs.errors.ResourceNotFound: If neither an object nor a directory exists
        """
        ctx = self.context()
        key = path_to_key(path)
        if path.endswith("/") or not key:
            return FileInfo.directory(path, ctx.user)

        try:
            obj = self.api.get_object(ctx.bucket, key)
        except fs.errors.ResourceNotFound:
            if is_directory(self.api, ctx.bucket, key):
                return FileInfo.directory(path, ctx.user)
            raise fs.errors.ResourceNotFound(path, msg=f"No such file or directory: '{path}'")
        return FileInfo.file(path, ctx.user, obj)

    def change_dir(self, path):
        info = self.stat(path)
        if not info.is_dir:
            raise fs.errors.DirectoryExpected(path, msg=f"Not a directory: '{path}'")
        self.cur_dir = path

    def scandir(self, path):
        """
        Iterate over the entries directly below a directory

        Objects stored deeper produce one directory entry per first level
        segment, at the position of the first object below it.

        Args:
            path (str): The FTP path of the directory

        Yields:
            FileInfo: Files and synthesized directories, in key order
        """
        ctx = self.context()
        prefix = dir_prefix(path)
        entries = self.api.list_objects(ctx.bucket, prefix)

        seen = set()
        for obj in entries:
            if not obj.name.startswith(prefix):
                continue
            rest = obj.name[len(prefix):].lstrip("/")
            if not rest:
                continue
            if "/" in rest:
                name = rest.split("/", 1)[0]
                if name in seen:
                    continue
                seen.add(name)
                yield FileInfo.directory(name, ctx.user)
            else:
                yield FileInfo.file(rest, ctx.user, obj)

    def list_dir(self, path, visit):
        """
        Call ``visit`` with every entry of a directory

        Args:
            path (str): The FTP path of the directory
            visit (callable): Called with one FileInfo per entry. An
                exception raised by it stops the listing and propagates.
        """
        for info in self.scandir(path):
            visit(info)

    def delete_dir(self, path):
        """
        Delete every object below a directory

        Deleting a directory that holds nothing is not an error. Objects are
        deleted one at a time, and the first failure is raised as is,
        leaving the objects deleted so far deleted.
        """
        ctx = self.context()
        prefix = dir_prefix(path)
        entries = self.api.list_objects(ctx.bucket, prefix)
        if not entries:
            return

        for done, obj in enumerate(entries):
            try:
                self.api.delete_object(ctx.bucket, obj.name)
            except fs.errors.FSError:
                log.warning("Removing %s stopped after %d of %d objects", path, done, len(entries))
                raise
            log.debug("Deleted %s/%s", ctx.bucket, obj.name)

    def delete_file(self, path):
        ctx = self.context()
        log.debug("delete file %s", path)
        self.api.delete_object(ctx.bucket, path_to_key(path))

    def rename(self, src, dst):
        """
        Move a file, or a directory with everything below it

        A source without an object at its key is handled as a directory:
        each object below it is copied to the destination prefix and then
        deleted. There is no rollback; the first failure is raised and the
        objects moved so far stay moved.

        Raises:
            fs.errors.ResourceNotFound: If ``src`` is neither a file nor a directory
        """
        ctx = self.context()
        src_key = path_to_key(src).rstrip("/")
        dst_key = path_to_key(dst).rstrip("/")
        log.debug("rename from %s to %s", src, dst)

        try:
            self.api.get_object(ctx.bucket, src_key)
        except fs.errors.ResourceNotFound:
            self._rename_dir(ctx, src, src_key, dst_key)
            return

        self.api.copy_object(ctx.bucket, src_key, ctx.bucket, dst_key)
        self.api.delete_object(ctx.bucket, src_key)

    def _rename_dir(self, ctx, src, src_key, dst_key):
        # type: (DriverContext, str, str, str) -> None
        if not is_directory(self.api, ctx.bucket, src_key):
            raise fs.errors.ResourceNotFound(src, msg=f"No such file or directory: '{src}'")

        src_prefix = dir_prefix(src_key)
        dst_prefix = dir_prefix(dst_key)
        entries = self.api.list_objects(ctx.bucket, src_prefix)
        for done, obj in enumerate(entries):
            new_name = dst_prefix + obj.name[len(src_prefix):]
            try:
                self.api.copy_object(ctx.bucket, obj.name, ctx.bucket, new_name)
                self.api.delete_object(ctx.bucket, obj.name)
            except fs.errors.FSError:
                log.warning("Moving %s stopped after %d of %d objects", src, done, len(entries))
                raise
            log.debug("Moved %s to %s", obj.name, new_name)

    def make_dir(self, path):
        """Create the empty object that makes a directory show up in listings"""
        ctx = self.context()
        key = dir_prefix(path)
        obj = self.api.insert_object(ctx.bucket, key, io.BytesIO(b""))
        log.info("Created directory %s at location %s", obj.name, obj.self_link)

    def get_file(self, path, offset=0):
        """
        Open an object for reading

        Args:
            path (str): The FTP path of the file
            offset (int): Accepted for the driver contract, not applied; the
                stream always starts at the first byte

        Returns:
            tuple: The declared size and a readable stream of the content
        """
        ctx = self.context()
        obj = self.api.get_object(ctx.bucket, path_to_key(path))
        log.info("The media download link for %s/%s is %s", ctx.bucket, obj.name, obj.media_link)
        return obj.size, self.api.open_media(obj)

    def put_file(self, path, data, append=False):
        """
        Write an object, replacing any previous content

        Args:
            path (str): The FTP path of the file
            data: A binary file-like object with the new content
            append (bool): Accepted for the driver contract, ignored

        Returns:
            int: Always 0, the number of bytes written is not tracked
        """
        ctx = self.context()
        obj = self.api.insert_object(ctx.bucket, path_to_key(path), data)
        log.info("Created object %s at location %s", obj.name, obj.self_link)
        return 0


class GCSDriverFactory:
    """
    Creates one driver per FTP session

    Attributes:
        bucket (str): The bucket name, or the bucket name prefix in per user mode
        api_factory (callable): Returns a fresh GCSApi for each driver
        bucket_per_user (bool): Use one bucket per login user
    """

    def __init__(self, bucket, api_factory, bucket_per_user=False):
        self.bucket = bucket
        self.api_factory = api_factory
        self.bucket_per_user = bucket_per_user

    @classmethod
    def from_config(cls, config):
        api_factory = partial(GCSApi.from_service_account_info, config.service_account_info)
        return cls(config.bucket, api_factory, bucket_per_user=config.bucket_per_user)

    def new_driver(self):
        return GCSDriver(self.bucket, self.api_factory(), bucket_per_user=self.bucket_per_user)

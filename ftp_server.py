import io
import logging
import posixpath
import uuid
from functools import wraps

import fs.errors
from pyftpdlib.authorizers import DummyAuthorizer
from pyftpdlib.filesystems import AbstractedFS, FilesystemError
from pyftpdlib.handlers import DTPHandler, FTPHandler
from pyftpdlib.servers import ThreadedFTPServer


log = logging.getLogger(__name__)


def report_ftp_errors(func):
    """Decorator to catch FS errors and re-raise them as pyftpdlib errors.

    pyftpdlib only turns OSError and FilesystemError into 550 replies, so
    every FSError coming out of the driver is translated, keeping its
    message. Other exceptions are passed through untouched.
    """
    @wraps(func)
    def wrapper(*args, **kwds):
        try:
            return func(*args, **kwds)
        except fs.errors.FSError as e:
            log.debug("%s failed: %s", func.__name__, e)
            raise FilesystemError(str(e))
    return wrapper


class GCSReadFile:
    """Read handle over the content stream of an object.

    Seeking is not supported: downloads always start at the first byte.
    """

    def __init__(self, path, size, stream):
        self.name = path
        self.size = size
        self._stream = stream
        self.closed = False

    def read(self, size=-1):
        if self.closed:
            raise ValueError("I/O operation on closed file")
        if size is None or size < 0:
            return self._stream.read()
        return self._stream.read(size)

    def seek(self, offset, whence=io.SEEK_SET):
        raise io.UnsupportedOperation("download offsets are not supported")

    def close(self):
        if not self.closed:
            self.closed = True
            self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class GCSWriteFile(io.BytesIO):
    """
    A file-like object buffering an upload

    The buffered content is written to the bucket when the file is closed.

    Attributes:
        name (str): The FTP path of the file
        driver (gcs_driver.GCSDriver): The driver of the session
        append (bool): Whether the file was opened for appending
    """

    def __init__(self, path, driver, append=False):
        super().__init__()
        self.name = path
        self.driver = driver
        self.append = append

    def close(self):
        """Send the content to the bucket, then release the buffer"""
        if self.closed:
            return
        try:
            self.seek(0)
            report_ftp_errors(self.driver.put_file)(self.name, self, self.append)
        finally:
            super().close()


class GCSDTPHandler(DTPHandler):
    """
    Data channel uploading received files before the transfer is answered

    pyftpdlib closes the file after the channel is marked closed, where a
    failing close leaves the client without a reply. Received files are
    closed here first so an upload failure becomes the transfer reply.
    """

    def close(self):
        if not self._closed and self.receive and self.file_obj is not None and not self.file_obj.closed:
            try:
                self.file_obj.close()
            except FilesystemError as e:
                log.warning("upload of %s failed: %s", self.file_obj.name, e)
                self.transfer_finished = False
                self._resp = ("550 %s." % e, log.warning)
        super().close()


class GCSFilesystem(AbstractedFS):
    """
    pyftpdlib filesystem exposing a bucket through a GCSDriver

    FTP paths are used as they are, there is no local root directory.
    ``driver_factory`` is set on a subclass by create_ftp_server.
    """

    driver_factory = None

    def __init__(self, root, cmd_channel):
        super().__init__(root, cmd_channel)
        self.driver = self.driver_factory.new_driver()
        self.driver.init(cmd_channel)
        # entries of the directory being formatted, keyed by path
        self._listing = {}

    # --- Pathname / conversion utilities

    def ftp2fs(self, ftppath):
        return self.ftpnorm(ftppath)

    def fs2ftp(self, fspath):
        return fspath

    def validpath(self, path):
        return True

    def realpath(self, path):
        return path

    # --- Wrapper methods around the driver

    @report_ftp_errors
    def chdir(self, path):
        self.driver.change_dir(path)
        self.cwd = path

    @report_ftp_errors
    def mkdir(self, path):
        self.driver.make_dir(path)

    @report_ftp_errors
    def listdir(self, path):
        return [info.name for info in self.driver.scandir(path)]

    def listdirinfo(self, path):
        return self.listdir(path)

    @report_ftp_errors
    def rmdir(self, path):
        self.driver.delete_dir(path)

    @report_ftp_errors
    def remove(self, path):
        self.driver.delete_file(path)

    @report_ftp_errors
    def rename(self, src, dst):
        self.driver.rename(src, dst)

    def chmod(self, path, mode):
        raise FilesystemError("Changing permissions is not supported")

    def utime(self, path, timeval):
        raise FilesystemError("Changing modification times is not supported")

    def readlink(self, path):
        raise FilesystemError("Links are not supported")

    def _info(self, path):
        info = self._listing.get(path)
        if info is None:
            info = self.driver.stat(path)
        return info

    @report_ftp_errors
    def stat(self, path):
        return self._info(path).to_stat()

    lstat = stat

    @report_ftp_errors
    def open(self, filename, mode):
        if "r" in mode and "+" not in mode:
            size, stream = self.driver.get_file(filename, 0)
            return GCSReadFile(filename, size, stream)
        return GCSWriteFile(filename, self.driver, append="a" in mode)

    def mkstemp(self, suffix="", prefix="", dir=None, mode="wb"):
        name = f"{prefix}{uuid.uuid4().hex}{suffix}"
        return GCSWriteFile(posixpath.join(dir or self.cwd, name), self.driver)

    # --- Wrapper methods around stat

    def isfile(self, path):
        try:
            return not self.driver.stat(path).is_dir
        except fs.errors.FSError:
            return False

    def islink(self, path):
        return False

    def isdir(self, path):
        try:
            return self.driver.stat(path).is_dir
        except fs.errors.FSError:
            return False

    def lexists(self, path):
        try:
            self.driver.stat(path)
        except fs.errors.FSError:
            return False
        return True

    @report_ftp_errors
    def getsize(self, path):
        return self.driver.stat(path).size

    @report_ftp_errors
    def getmtime(self, path):
        return self.driver.stat(path).modified.timestamp()

    def get_user_by_uid(self, uid):
        return self.driver.context().user

    def get_group_by_gid(self, gid):
        return self.driver.context().user

    # --- Listings

    def _collect_listing(self, basedir, listing):
        # A single entry (MLST, LIST on a file) is cheaper to stat.
        if len(listing) < 2:
            return
        try:
            for info in self.driver.scandir(basedir):
                self._listing[posixpath.join(basedir, info.name)] = info
        except fs.errors.FSError as e:
            log.warning("Listing %s for its metadata failed: %s", basedir, e)
            self._listing = {}

    def format_list(self, basedir, listing, ignore_err=True):
        self._collect_listing(basedir, listing)
        try:
            yield from super().format_list(basedir, listing, ignore_err=ignore_err)
        finally:
            self._listing = {}

    def format_mlsx(self, basedir, listing, perms, facts, ignore_err=True):
        self._collect_listing(basedir, listing)
        try:
            yield from super().format_mlsx(basedir, listing, perms, facts, ignore_err=ignore_err)
        finally:
            self._listing = {}


def create_authorizer(config):
    authorizer = DummyAuthorizer()
    for auth in config.ftp_auths:
        authorizer.add_user(
            auth["Username"],
            auth.get("Password", ""),
            "/",
            perm=auth.get("Perm", "elradfmw"),
        )
    if config.ftp_noauth:
        authorizer.add_anonymous("/", perm=config.ftp_anonymous_perm)
    return authorizer


def create_handler(driver_factory, authorizer, banner="GCS FTP server ready."):
    """
    Build an FTPHandler class serving buckets through ``driver_factory``

    Args:
        driver_factory (gcs_driver.GCSDriverFactory): Creates the driver of each session
        authorizer (DummyAuthorizer): Checks logins
        banner (str): Greeting sent to clients

    Returns:
        type: An FTPHandler subclass
    """
    filesystem = type("BucketFilesystem", (GCSFilesystem,), {"driver_factory": driver_factory})
    return type(
        "GCSFTPHandler",
        (FTPHandler,),
        {
            "authorizer": authorizer,
            "abstracted_fs": filesystem,
            "dtp_handler": GCSDTPHandler,
            "banner": banner,
            # handles are not OS files
            "use_sendfile": False,
        },
    )


def create_ftp_server(config, driver_factory, server_class=ThreadedFTPServer):
    handler = create_handler(driver_factory, create_authorizer(config), banner=config.ftp_banner)
    if config.ftp_passive_ports is not None:
        handler.passive_ports = config.ftp_passive_ports
    if config.ftp_masquerade_address:
        handler.masquerade_address = config.ftp_masquerade_address

    # one thread per connection, backend calls block
    return server_class((config.ftp_host, config.ftp_port), handler)

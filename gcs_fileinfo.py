import datetime
import logging
import os
import stat as statinfo

import fs.enums
import fs.info


log = logging.getLogger(__name__)

DIR_MODE = statinfo.S_IFDIR | 0o777
FILE_MODE = statinfo.S_IFREG | 0o777


def parse_rfc3339(value):
    """
    Parse an RFC 3339 timestamp as reported by the storage JSON API

    Args:
        value (str): A timestamp such as ``2020-01-02T03:04:05.678Z``

    Returns:
        datetime.datetime: An aware datetime

    Raises:
        ValueError: If the string is not an RFC 3339 timestamp
    """
    if not isinstance(value, str) or "T" not in value:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"RFC 3339 timestamp without offset: {value!r}")
    return parsed


class FileInfo:
    """
    Metadata of one entry as seen through FTP

    A directory is synthesized from key prefixes and never carries an
    object; a file wraps the ObjectRecord it was looked up or listed from.
    Owner and group are always the user of the session that asked.

    Attributes:
        name (str): The name given at construction, unmodified
        is_dir (bool): Whether the entry is a directory
        user (str): The logged in user the entry is attributed to
        obj (gcs_api.ObjectRecord): The backing object, None for directories
    """

    def __init__(self, name, is_dir=False, user="", obj=None):
        self._name = name
        self._is_dir = is_dir
        self.user = user
        self.obj = None if is_dir else obj

    def __repr__(self):
        kind = "dir" if self._is_dir else "file"
        return f"<FileInfo {kind} {self._name!r}>"

    @classmethod
    def directory(cls, name, user):
        return cls(name, is_dir=True, user=user)

    @classmethod
    def file(cls, name, user, obj):
        return cls(name, is_dir=False, user=user, obj=obj)

    @property
    def name(self):
        return self._name

    @property
    def is_dir(self):
        return self._is_dir

    @property
    def size(self):
        if self.obj is None:
            return 0
        return self.obj.size

    @property
    def mode(self):
        return DIR_MODE if self._is_dir else FILE_MODE

    @property
    def modified(self):
        # type: () -> datetime.datetime
        """Server recorded update time, or now when it cannot be parsed."""
        if self.obj is None:
            return datetime.datetime.now(datetime.timezone.utc)
        try:
            return parse_rfc3339(self.obj.updated)
        except ValueError:
            log.error("Could not parse time for string %r", self.obj.updated)
            return datetime.datetime.now(datetime.timezone.utc)

    @property
    def owner(self):
        return self.user

    @property
    def group(self):
        return self.user

    def to_stat(self):
        """
        Project the entry onto an ``os.stat_result``

        Returns:
            os.stat_result: mode, size and times filled in, link count 1
        """
        mtime = self.modified.timestamp()
        return os.stat_result((self.mode, 0, 0, 1, 0, 0, self.size, mtime, mtime, mtime))

    def to_info(self):
        # type: () -> fs.info.Info
        """Project the entry onto a pyfilesystem2 resource info."""
        mtime = self.modified.timestamp()
        resource_type = fs.enums.ResourceType.directory if self._is_dir else fs.enums.ResourceType.file
        return fs.info.Info(
            {
                "basic": {"name": self._name, "is_dir": self._is_dir},
                "details": {
                    "accessed": mtime,
                    "modified": mtime,
                    "size": self.size,
                    "type": int(resource_type),
                },
                "access": {
                    "user": self.owner,
                    "group": self.group,
                    "permissions": ["u_r", "u_w", "u_x", "g_r", "g_w", "g_x", "o_r", "o_w", "o_x"],
                },
            }
        )

# pylint: disable=C0116
#
#   Copyright 2024 getcarrier.io
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""
Backing store abstraction

Paths handed to a store are '/'-separated and relative to the store root.
Failures surface as the builtin OSError subclasses (FileNotFoundError,
FileExistsError, NotADirectoryError, IsADirectoryError, PermissionError)
plus DirectoryNotEmptyError, so callers translate them in one place.
"""

import errno
import logging
import os
import posixpath
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, NamedTuple

log = logging.getLogger(__name__)


TEMP_PREFIX = '.s3gate-tmp-'


class DirectoryNotEmptyError(OSError):
    """Directory removal refused because it still has children"""

    def __init__(self, path: str):
        super().__init__(errno.ENOTEMPTY, os.strerror(errno.ENOTEMPTY), path)


class EntryStat(NamedTuple):
    """Metadata of a single store entry"""
    name: str
    is_dir: bool
    size: int
    modified: datetime


def is_temp_name(name: str) -> bool:
    return name.startswith(TEMP_PREFIX)


def clean_path(path: str) -> str:
    """Normalise a store-relative path; the store root is ''"""
    path = posixpath.normpath('/' + (path or '')).lstrip('/')
    return path


class BackingStore(ABC):
    """Filesystem operations the object store and upload coordinator need"""

    @abstractmethod
    def create_dir(self, path: str) -> bool:
        """
        Create a directory and its parents.

        Returns True if created, False if it already existed.
        Raises FileExistsError if a file occupies the path.
        """

    @abstractmethod
    def stat(self, path: str) -> EntryStat:
        """Raises FileNotFoundError if nothing is there"""

    @abstractmethod
    def read_all(self, path: str) -> bytes:
        """Raises FileNotFoundError or IsADirectoryError"""

    @abstractmethod
    def write_atomic(self, path: str, chunks: Iterable[bytes]) -> int:
        """
        Write chunks to a temporary sibling, then rename it over ``path``.

        Parent directories are created as needed. The temporary file is
        removed if writing fails. Returns the number of bytes written.
        """

    @abstractmethod
    def append(self, path: str, data: bytes, truncate: bool = False) -> None:
        """Append to (or, with truncate, replace) a file, creating parents"""

    @abstractmethod
    def delete(self, path: str) -> None:
        """
        Remove a file or an empty directory.

        Raises FileNotFoundError or DirectoryNotEmptyError.
        """

    @abstractmethod
    def list_children(self, path: str) -> List[EntryStat]:
        """Immediate children sorted by name, temporary files excluded"""


class LocalFilesystemStore(BackingStore):
    """BackingStore over a real directory"""

    def __init__(self, root: str):
        self.root = os.path.realpath(root)

    def _resolve(self, path: str) -> str:
        full = os.path.realpath(os.path.join(self.root, *clean_path(path).split('/')))
        if full != self.root and not full.startswith(self.root + os.sep):
            raise PermissionError(errno.EACCES, 'path escapes store root', path)
        return full

    @staticmethod
    def _entry(name: str, st: os.stat_result, is_dir: bool) -> EntryStat:
        return EntryStat(
            name=name,
            is_dir=is_dir,
            size=0 if is_dir else st.st_size,
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def create_dir(self, path: str) -> bool:
        full = self._resolve(path)
        if os.path.isdir(full):
            return False
        if os.path.exists(full):
            raise FileExistsError(errno.EEXIST, 'file exists at directory path', path)
        try:
            os.makedirs(full)
        except FileExistsError:
            if os.path.isdir(full):
                return False
            raise
        return True

    def stat(self, path: str) -> EntryStat:
        full = self._resolve(path)
        st = os.stat(full)
        return self._entry(posixpath.basename(clean_path(path)), st, os.path.isdir(full))

    def read_all(self, path: str) -> bytes:
        with open(self._resolve(path), 'rb') as f:
            return f.read()

    def write_atomic(self, path: str, chunks: Iterable[bytes]) -> int:
        full = self._resolve(path)
        directory = os.path.dirname(full)
        os.makedirs(directory, exist_ok=True)

        temp_path = os.path.join(directory, f'{TEMP_PREFIX}{uuid.uuid4().hex}')
        written = 0
        try:
            with open(temp_path, 'wb') as f:
                for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
            os.replace(temp_path, full)
        except BaseException:
            try:
                os.remove(temp_path)
            except FileNotFoundError:
                pass
            raise
        return written

    def append(self, path: str, data: bytes, truncate: bool = False) -> None:
        full = self._resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, 'wb' if truncate else 'ab') as f:
            f.write(data)

    def delete(self, path: str) -> None:
        full = self._resolve(path)
        if full == self.root:
            raise PermissionError(errno.EACCES, 'refusing to delete store root', path)
        if os.path.isdir(full) and not os.path.islink(full):
            try:
                os.rmdir(full)
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    raise DirectoryNotEmptyError(path) from e
                raise
        else:
            os.remove(full)

    def list_children(self, path: str) -> List[EntryStat]:
        full = self._resolve(path)
        entries = []
        with os.scandir(full) as it:
            for item in it:
                if is_temp_name(item.name):
                    continue
                try:
                    is_dir = item.is_dir()
                    st = item.stat()
                except FileNotFoundError:
                    # removed while listing
                    continue
                entries.append(self._entry(item.name, st, is_dir))
        entries.sort(key=lambda entry: entry.name)
        return entries


class MemoryStore(BackingStore):
    """In-memory BackingStore used by the tests"""

    def __init__(self):
        self._lock = threading.RLock()
        self._dirs: Dict[str, datetime] = {'': self._now()}
        self._files: Dict[str, bytearray] = {}
        self._mtimes: Dict[str, datetime] = {}

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _require_parent_dirs(self, path: str) -> None:
        parent = posixpath.dirname(path)
        missing = []
        while parent not in self._dirs:
            if parent in self._files:
                raise NotADirectoryError(errno.ENOTDIR, 'not a directory', parent)
            missing.append(parent)
            parent = posixpath.dirname(parent)
        for directory in reversed(missing):
            self._dirs[directory] = self._now()

    def create_dir(self, path: str) -> bool:
        path = clean_path(path)
        with self._lock:
            if path in self._dirs:
                return False
            if path in self._files:
                raise FileExistsError(errno.EEXIST, 'file exists at directory path', path)
            self._require_parent_dirs(path)
            self._dirs[path] = self._now()
            return True

    def stat(self, path: str) -> EntryStat:
        path = clean_path(path)
        with self._lock:
            if path in self._dirs:
                return EntryStat(posixpath.basename(path), True, 0, self._dirs[path])
            if path in self._files:
                return EntryStat(
                    posixpath.basename(path), False, len(self._files[path]), self._mtimes[path]
                )
        raise FileNotFoundError(errno.ENOENT, 'no such entry', path)

    def read_all(self, path: str) -> bytes:
        path = clean_path(path)
        with self._lock:
            if path in self._dirs:
                raise IsADirectoryError(errno.EISDIR, 'is a directory', path)
            if path not in self._files:
                raise FileNotFoundError(errno.ENOENT, 'no such entry', path)
            return bytes(self._files[path])

    def write_atomic(self, path: str, chunks: Iterable[bytes]) -> int:
        path = clean_path(path)
        # Buffer outside the lock; a failing iterator leaves nothing behind
        data = bytearray()
        for chunk in chunks:
            data.extend(chunk)
        with self._lock:
            if path in self._dirs:
                raise IsADirectoryError(errno.EISDIR, 'is a directory', path)
            self._require_parent_dirs(path)
            self._files[path] = data
            self._mtimes[path] = self._now()
        return len(data)

    def append(self, path: str, data: bytes, truncate: bool = False) -> None:
        path = clean_path(path)
        with self._lock:
            if path in self._dirs:
                raise IsADirectoryError(errno.EISDIR, 'is a directory', path)
            self._require_parent_dirs(path)
            if truncate or path not in self._files:
                self._files[path] = bytearray()
            self._files[path].extend(data)
            self._mtimes[path] = self._now()

    def delete(self, path: str) -> None:
        path = clean_path(path)
        with self._lock:
            if path == '':
                raise PermissionError(errno.EACCES, 'refusing to delete store root', path)
            if path in self._files:
                del self._files[path]
                del self._mtimes[path]
                return
            if path not in self._dirs:
                raise FileNotFoundError(errno.ENOENT, 'no such entry', path)
            if self._children_names(path):
                raise DirectoryNotEmptyError(path)
            del self._dirs[path]

    def _children_names(self, path: str) -> List[str]:
        names = []
        for candidate in list(self._dirs) + list(self._files):
            if candidate and posixpath.dirname(candidate) == path:
                names.append(posixpath.basename(candidate))
        return names

    def list_children(self, path: str) -> List[EntryStat]:
        path = clean_path(path)
        with self._lock:
            if path in self._files:
                raise NotADirectoryError(errno.ENOTDIR, 'not a directory', path)
            if path not in self._dirs:
                raise FileNotFoundError(errno.ENOENT, 'no such entry', path)
            entries = [
                self.stat(posixpath.join(path, name))
                for name in self._children_names(path)
                if not is_temp_name(name)
            ]
        entries.sort(key=lambda entry: entry.name)
        return entries

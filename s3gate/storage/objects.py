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
Namespace mapper

Maps the flat bucket/key namespace onto a directory tree held by a
BackingStore. A bucket is a top-level directory, an object is a file below
it, and a key ending in '/' is a directory.
"""

import hashlib
import logging
import posixpath
from datetime import datetime
from typing import BinaryIO, Iterator, List, NamedTuple, Optional

from .backend import BackingStore, DirectoryNotEmptyError, EntryStat
from ..s3.errors import ConflictError, InternalError, InvalidRequestError, NotFoundError
from ..s3.utils import detect_content_type, validate_bucket_name

log = logging.getLogger(__name__)


CHUNK_SIZE = 64 * 1024


class BucketEntry(NamedTuple):
    name: str
    creation_date: datetime


class ObjectEntry(NamedTuple):
    key: str
    size: int
    modified: datetime
    etag: str


class ObjectData(NamedTuple):
    key: str
    size: int
    modified: datetime
    etag: str
    content_type: str
    body: Optional[bytes]


class ListResult(NamedTuple):
    objects: List[ObjectEntry]
    common_prefixes: List[str]


class PutResult(NamedTuple):
    etag: Optional[str]
    created: bool


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def normalize_key(key: str) -> str:
    """
    Normalise an object key into a bucket-relative path.

    Raises InvalidRequestError for keys that could leave the bucket.
    """
    if not key:
        return ''
    if '\x00' in key:
        raise InvalidRequestError('Object key contains a NUL byte', resource=key)
    if key.startswith('/'):
        raise InvalidRequestError('Object key must not be absolute', resource=key)
    if '..' in key.split('/'):
        raise InvalidRequestError('Object key must not contain ".." segments', resource=key)

    normalized = posixpath.normpath(key)
    return '' if normalized == '.' else normalized


def _check_bucket_segment(bucket: str) -> None:
    if not bucket or bucket in ('.', '..') or '/' in bucket or '\x00' in bucket:
        raise InvalidRequestError(
            'The specified bucket is not valid', code='InvalidBucketName', resource=bucket
        )


class ObjectStore:
    """Bucket and object operations over a BackingStore"""

    def __init__(self, store: BackingStore):
        self.store = store

    @staticmethod
    def _path(bucket: str, key: str = '') -> str:
        return posixpath.join(bucket, key) if key else bucket

    def _stat(self, path: str) -> Optional[EntryStat]:
        try:
            return self.store.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return None

    def require_bucket(self, bucket: str) -> EntryStat:
        _check_bucket_segment(bucket)
        entry = self._stat(bucket)
        if entry is None or not entry.is_dir:
            raise NotFoundError(
                'The specified bucket does not exist', code='NoSuchBucket', resource=bucket
            )
        return entry

    # Buckets

    def create_bucket(self, name: str) -> bool:
        """Returns True if the bucket was created, False if it already existed"""
        is_valid, error = validate_bucket_name(name)
        if not is_valid:
            raise InvalidRequestError(error, code='InvalidBucketName', resource=name)
        try:
            created = self.store.create_dir(name)
        except FileExistsError:
            raise ConflictError(
                'A file occupies the bucket path', code='BucketAlreadyExists', resource=name
            ) from None
        if created:
            log.info("Created bucket %s", name)
        return created

    def list_buckets(self) -> List[BucketEntry]:
        return [
            BucketEntry(name=entry.name, creation_date=entry.modified)
            for entry in self.store.list_children('')
            if entry.is_dir
        ]

    def head_bucket(self, name: str) -> BucketEntry:
        entry = self.require_bucket(name)
        return BucketEntry(name=entry.name, creation_date=entry.modified)

    def delete_bucket(self, name: str) -> None:
        self.require_bucket(name)
        try:
            self.store.delete(name)
        except DirectoryNotEmptyError:
            raise ConflictError(
                'The bucket you tried to delete is not empty', code='BucketNotEmpty', resource=name
            ) from None
        log.info("Deleted bucket %s", name)

    # Objects

    def stat_key(self, bucket: str, key: str) -> Optional[EntryStat]:
        """Entry the key resolves to, or None; requires the bucket"""
        self.require_bucket(bucket)
        return self._stat(self._path(bucket, normalize_key(key)))

    def put_object(self, bucket: str, key: str, body_stream: Optional[BinaryIO],
                   is_directory_marker: bool = False) -> PutResult:
        self.require_bucket(bucket)
        rel = normalize_key(key)
        if not rel:
            raise InvalidRequestError('Object key cannot be empty', resource=key)
        path = self._path(bucket, rel)

        if is_directory_marker:
            try:
                created = self.store.create_dir(path)
            except (FileExistsError, NotADirectoryError):
                raise ConflictError(
                    'A file occupies the directory path', code='ExistingObjectIsFile', resource=key
                ) from None
            return PutResult(etag=None, created=created)

        existing = self._stat(path)
        if existing is not None and existing.is_dir:
            raise ConflictError(
                'A directory occupies the object path', code='ExistingObjectIsDirectory', resource=key
            )

        digest = hashlib.md5()
        try:
            self.store.write_atomic(path, self._chunks(body_stream, digest))
        except (FileExistsError, NotADirectoryError):
            raise ConflictError(
                'A file occupies a parent directory of the key', code='ExistingObjectIsFile', resource=key
            ) from None
        except IsADirectoryError:
            raise ConflictError(
                'A directory occupies the object path', code='ExistingObjectIsDirectory', resource=key
            ) from None
        return PutResult(etag=digest.hexdigest(), created=existing is None)

    @staticmethod
    def _chunks(body_stream: Optional[BinaryIO], digest) -> Iterator[bytes]:
        if body_stream is None:
            return
        while True:
            chunk = body_stream.read(CHUNK_SIZE)
            if not chunk:
                break
            digest.update(chunk)
            yield chunk

    def _load(self, bucket: str, key: str, with_body: bool) -> ObjectData:
        self.require_bucket(bucket)
        rel = normalize_key(key)
        path = self._path(bucket, rel)

        entry = self._stat(path) if rel else None
        if entry is None or entry.is_dir:
            raise NotFoundError('The specified key does not exist.', code='NoSuchKey', resource=key)

        try:
            data = self.store.read_all(path)
        except FileNotFoundError:
            raise NotFoundError('The specified key does not exist.', code='NoSuchKey', resource=key) from None
        except OSError as e:
            raise InternalError(f'Failed to read object: {e}', resource=key) from e

        return ObjectData(
            key=rel,
            size=entry.size,
            modified=entry.modified,
            etag=md5_hex(data),
            content_type=detect_content_type(data, rel),
            body=data if with_body else None,
        )

    def get_object(self, bucket: str, key: str) -> ObjectData:
        return self._load(bucket, key, with_body=True)

    def head_object(self, bucket: str, key: str) -> ObjectData:
        return self._load(bucket, key, with_body=False)

    def delete_object(self, bucket: str, key: str) -> None:
        self.require_bucket(bucket)
        rel = normalize_key(key)
        if not rel:
            raise InvalidRequestError('Object key cannot be empty', resource=key)
        try:
            self.store.delete(self._path(bucket, rel))
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError('The specified key does not exist.', code='NoSuchKey', resource=key) from None
        except DirectoryNotEmptyError:
            raise ConflictError('The prefix is not empty', code='NotEmpty', resource=key) from None

    def append_object(self, bucket: str, key: str, data: bytes, truncate: bool = False) -> None:
        """Write primitive used by multipart assembly"""
        self.require_bucket(bucket)
        rel = normalize_key(key)
        try:
            self.store.append(self._path(bucket, rel), data, truncate=truncate)
        except IsADirectoryError:
            raise ConflictError(
                'A directory occupies the object path', code='ExistingObjectIsDirectory', resource=key
            ) from None
        except (FileExistsError, NotADirectoryError):
            raise ConflictError(
                'A file occupies a parent directory of the key', code='ExistingObjectIsFile', resource=key
            ) from None

    # Listing

    def _object_entry(self, bucket: str, rel: str, entry: EntryStat) -> Optional[ObjectEntry]:
        try:
            data = self.store.read_all(self._path(bucket, rel))
        except FileNotFoundError:
            # removed between listing and reading
            return None
        return ObjectEntry(key=rel, size=entry.size, modified=entry.modified, etag=md5_hex(data))

    def _collect(self, bucket: str, rel_dir: str, children: List[EntryStat],
                 recursive: bool, result: ListResult) -> None:
        for child in children:
            child_rel = posixpath.join(rel_dir, child.name) if rel_dir else child.name
            if child.is_dir:
                if recursive:
                    try:
                        grandchildren = self.store.list_children(self._path(bucket, child_rel))
                    except FileNotFoundError:
                        continue
                    self._collect(bucket, child_rel, grandchildren, recursive, result)
                else:
                    result.common_prefixes.append(child_rel + '/')
                continue
            obj = self._object_entry(bucket, child_rel, child)
            if obj is not None:
                result.objects.append(obj)

    def list_objects(self, bucket: str, prefix: str = '', recursive: bool = False) -> ListResult:
        """
        List the entries a prefix names.

        A file prefix lists just that file. A directory prefix lists its
        children: files as objects and subdirectories as common prefixes,
        or, when recursive, every file of the subtree. A prefix naming
        nothing lists the siblings whose names start with its last segment.
        """
        self.require_bucket(bucket)
        rel = normalize_key(prefix)
        result = ListResult(objects=[], common_prefixes=[])

        entry = self._stat(self._path(bucket, rel))
        if entry is not None and not entry.is_dir:
            obj = self._object_entry(bucket, rel, entry)
            if obj is not None:
                result.objects.append(obj)
            return result

        if entry is not None:
            children = self.store.list_children(self._path(bucket, rel))
            self._collect(bucket, rel, children, recursive, result)
            return result

        if prefix.endswith('/'):
            return result

        parent, stem = posixpath.split(rel)
        parent_entry = self._stat(self._path(bucket, parent))
        if parent_entry is None or not parent_entry.is_dir:
            return result

        children = [
            child for child in self.store.list_children(self._path(bucket, parent))
            if child.name.startswith(stem)
        ]
        self._collect(bucket, parent, children, recursive, result)
        return result

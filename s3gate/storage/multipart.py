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
Multipart upload coordinator

Parts land as files named <uploadId>_<partNumber>_<basename> under
<uploads>/<bucket>/<dirname(key)>/, and every upload has a JSON record at
<uploads>/<uploadId>.json naming its target and the parts received so far.
"""

import hashlib
import logging
import posixpath
import threading
import time
from datetime import datetime, timezone
from typing import BinaryIO, Dict, List, Tuple

from pydantic import BaseModel, Field

from .backend import BackingStore
from .locks import KeyLocks
from .objects import CHUNK_SIZE, ObjectStore, md5_hex, normalize_key
from ..s3.errors import ConflictError, InvalidRequestError, NotFoundError

log = logging.getLogger(__name__)


MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000


class PartInfo(BaseModel):
    part_number: int
    etag: str
    size: int
    last_modified: datetime


class UploadRecord(BaseModel):
    upload_id: str
    bucket: str
    key: str
    initiated: datetime
    parts: Dict[int, PartInfo] = Field(default_factory=dict)

    def sorted_parts(self) -> List[PartInfo]:
        return [self.parts[number] for number in sorted(self.parts)]


class UploadRegistry:
    """Upload records persisted as JSON beside the part files"""

    def __init__(self, store: BackingStore):
        self.store = store
        self.locks = KeyLocks()

    @staticmethod
    def _path(upload_id: str) -> str:
        return f'{upload_id}.json'

    def save(self, record: UploadRecord) -> None:
        self.store.write_atomic(self._path(record.upload_id), [record.model_dump_json().encode('utf-8')])

    def exists(self, upload_id: str) -> bool:
        try:
            self.store.stat(self._path(upload_id))
        except FileNotFoundError:
            return False
        return True

    def load(self, upload_id: str) -> UploadRecord:
        try:
            raw = self.store.read_all(self._path(upload_id))
        except (FileNotFoundError, IsADirectoryError):
            raise NotFoundError(
                'The specified upload does not exist', code='NoSuchUpload', resource=upload_id
            ) from None
        return UploadRecord.model_validate_json(raw)

    def delete(self, upload_id: str) -> None:
        try:
            self.store.delete(self._path(upload_id))
        except FileNotFoundError:
            log.warning("Upload record %s already gone", upload_id)


def _clean_etag(etag: str) -> str:
    return etag.strip().strip('"').lower()


class MultipartCoordinator:
    """Initiate, upload part, complete, abort and list parts"""

    def __init__(self, objects: ObjectStore, uploads: BackingStore, key_locks: KeyLocks = None):
        self.objects = objects
        self.uploads = uploads
        self.registry = UploadRegistry(uploads)
        self.key_locks = key_locks or KeyLocks()
        self._id_lock = threading.Lock()
        self._last_id = 0

    def _new_upload_id(self) -> str:
        with self._id_lock:
            candidate = max(time.time_ns(), self._last_id + 1)
            while self.registry.exists(str(candidate)):
                candidate += 1
            self._last_id = candidate
        return str(candidate)

    @staticmethod
    def part_path(bucket: str, key: str, upload_id: str, part_number: int) -> str:
        directory, name = posixpath.split(key)
        return posixpath.join(bucket, directory, f'{upload_id}_{part_number}_{name}')

    def _load_for(self, bucket: str, key: str, upload_id: str) -> UploadRecord:
        record = self.registry.load(upload_id)
        if record.bucket != bucket or record.key != key:
            raise InvalidRequestError(
                'The upload does not belong to this bucket and key', resource=upload_id
            )
        return record

    @staticmethod
    def _target_key(key: str) -> str:
        rel = normalize_key(key)
        if not rel or key.endswith('/'):
            raise InvalidRequestError('Multipart uploads need an object key', resource=key)
        return rel

    def initiate(self, bucket: str, key: str) -> str:
        rel = self._target_key(key)
        existing = self.objects.stat_key(bucket, rel)
        if existing is not None and existing.is_dir:
            raise ConflictError(
                'A directory occupies the object path', code='ExistingObjectIsDirectory', resource=key
            )

        upload_id = self._new_upload_id()
        self.registry.save(UploadRecord(
            upload_id=upload_id,
            bucket=bucket,
            key=rel,
            initiated=datetime.now(timezone.utc),
        ))
        log.info("Initiated multipart upload %s for %s/%s", upload_id, bucket, rel)
        return upload_id

    def upload_part(self, bucket: str, upload_id: str, key: str, part_number: int,
                    body_stream: BinaryIO) -> str:
        if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
            raise InvalidRequestError(
                f'Part number must be an integer between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}',
                resource=str(part_number),
            )
        rel = self._target_key(key)
        self.objects.require_bucket(bucket)
        self._load_for(bucket, rel, upload_id)

        digest = hashlib.md5()

        def chunks():
            while True:
                chunk = body_stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
                yield chunk

        size = self.uploads.write_atomic(self.part_path(bucket, rel, upload_id, part_number), chunks())
        etag = digest.hexdigest()

        with self.registry.locks.hold(upload_id):
            record = self._load_for(bucket, rel, upload_id)
            record.parts[part_number] = PartInfo(
                part_number=part_number,
                etag=etag,
                size=size,
                last_modified=datetime.now(timezone.utc),
            )
            self.registry.save(record)

        log.info("Stored part %s of upload %s (%s bytes)", part_number, upload_id, size)
        return etag

    def complete(self, bucket: str, key: str, upload_id: str,
                 manifest: List[Tuple[int, str]]) -> str:
        """
        Assemble the object from the parts, in manifest order.

        Each part is checked against the ETag the client sent before it is
        appended. A mismatch stops the assembly; parts already appended stay
        in the destination. On success, parts the manifest left out are
        discarded together with the upload record.

        Returns the MD5 of the assembled object.
        """
        if not manifest:
            raise InvalidRequestError(
                'The manifest names no parts', code='MalformedXML', resource=upload_id
            )
        rel = self._target_key(key)
        self.objects.require_bucket(bucket)
        self._load_for(bucket, rel, upload_id)

        final = hashlib.md5()
        merged = []
        with self.key_locks.hold(f'{bucket}/{rel}'):
            try:
                for part_number, expected in manifest:
                    part_path = self.part_path(bucket, rel, upload_id, part_number)
                    try:
                        data = self.uploads.read_all(part_path)
                    except FileNotFoundError:
                        raise InvalidRequestError(
                            f'Part {part_number} was not uploaded', code='InvalidPart', resource=upload_id
                        ) from None

                    if md5_hex(data) != _clean_etag(expected):
                        log.warning("Part %s of upload %s failed its hash check", part_number, upload_id)
                        raise ConflictError(
                            f'Part {part_number} does not match its ETag',
                            code='SignatureDoesNotMatch',
                            resource=upload_id,
                        )

                    self.objects.append_object(bucket, rel, data, truncate=not merged)
                    final.update(data)
                    merged.append(part_number)

                    try:
                        self.uploads.delete(part_path)
                    except OSError as e:
                        log.error("Failed to remove part file %s: %s", part_path, e)
            except Exception:
                self._forget_parts(upload_id, merged)
                raise

        with self.registry.locks.hold(upload_id):
            record = self.registry.load(upload_id)
            for part_number in record.parts:
                if part_number not in merged:
                    self._remove_part(bucket, rel, upload_id, part_number)
            self.registry.delete(upload_id)

        log.info("Completed multipart upload %s into %s/%s (%s parts)",
                 upload_id, bucket, rel, len(merged))
        return final.hexdigest()

    def _forget_parts(self, upload_id: str, merged: List[int]) -> None:
        if not merged:
            return
        with self.registry.locks.hold(upload_id):
            record = self.registry.load(upload_id)
            for part_number in merged:
                record.parts.pop(part_number, None)
            self.registry.save(record)

    def _remove_part(self, bucket: str, key: str, upload_id: str, part_number: int) -> None:
        part_path = self.part_path(bucket, key, upload_id, part_number)
        try:
            self.uploads.delete(part_path)
        except FileNotFoundError:
            log.warning("Part file %s already gone", part_path)

    def abort(self, bucket: str, key: str, upload_id: str) -> None:
        rel = self._target_key(key)
        with self.registry.locks.hold(upload_id):
            record = self._load_for(bucket, rel, upload_id)
            for part_number in record.parts:
                self._remove_part(bucket, rel, upload_id, part_number)
            self.registry.delete(upload_id)
        log.info("Aborted multipart upload %s for %s/%s", upload_id, bucket, rel)

    def list_parts(self, bucket: str, key: str, upload_id: str) -> UploadRecord:
        return self._load_for(bucket, self._target_key(key), upload_id)

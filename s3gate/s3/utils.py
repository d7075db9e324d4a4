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

""" S3 API Utility Functions """

import io
import mimetypes
import re
from datetime import datetime
from typing import BinaryIO, List, Tuple
from xml.etree.ElementTree import ParseError, fromstring

from flask import g, request

from .chunked import AwsChunkedReader
from .errors import InvalidRequestError


SNIFF_LENGTH = 512

# (signature, content type), checked in order against the leading bytes
_MAGIC_SIGNATURES = [
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'GIF87a', 'image/gif'),
    (b'GIF89a', 'image/gif'),
    (b'%PDF-', 'application/pdf'),
    (b'PK\x03\x04', 'application/zip'),
    (b'\x1f\x8b\x08', 'application/x-gzip'),
    (b'BM', 'image/bmp'),
    (b'OggS', 'application/ogg'),
    (b'\x00\x00\x01\x00', 'image/x-icon'),
]

_HTML_MARKERS = (
    b'<!doctype html', b'<html', b'<head', b'<script', b'<iframe', b'<h1', b'<div',
    b'<font', b'<table', b'<a', b'<style', b'<title', b'<b', b'<body', b'<br', b'<p',
    b'<!--',
)

# Bytes that never occur in text; mirrors the usual sniffing tables
_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)

_IP_ADDRESS_RE = re.compile(r'^\d+\.\d+\.\d+\.\d+$')
_BUCKET_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9.-]*[a-z0-9]$')


def parse_bucket_and_key(path: str) -> tuple:
    """
    Parse bucket name and key from S3 path.

    Path format: /{bucket}/{key}
    Returns: (bucket, key) tuple

    The path is already percent-decoded by werkzeug.
    """
    path = path.lstrip('/')

    if '/' not in path:
        return path, ''

    bucket, key = path.split('/', 1)
    return bucket, key


def detect_content_type(data: bytes, name: str = '') -> str:
    """
    Sniff the content type from the leading bytes.

    Known binary signatures win, then HTML and XML markers, then plain text
    when no binary bytes are present. Otherwise the key's extension decides,
    falling back to application/octet-stream.
    """
    head = data[:SNIFF_LENGTH]
    if not head:
        return 'text/plain; charset=utf-8'

    for signature, content_type in _MAGIC_SIGNATURES:
        if head.startswith(signature):
            return content_type

    stripped = head.lstrip(b'\t\n\x0c\r ')
    lowered = stripped.lower()
    for marker in _HTML_MARKERS:
        if lowered.startswith(marker) and len(lowered) > len(marker) \
                and lowered[len(marker):len(marker) + 1] in (b' ', b'>'):
            return 'text/html; charset=utf-8'
    if lowered.startswith(b'<?xml'):
        return 'text/xml; charset=utf-8'

    if not any(byte in _BINARY_BYTES for byte in head):
        return 'text/plain; charset=utf-8'

    content_type, _ = mimetypes.guess_type(name)
    return content_type or 'application/octet-stream'


def format_http_date(dt: datetime) -> str:
    """
    Format datetime as HTTP date (RFC 7231).

    Example: Wed, 21 Oct 2015 07:28:00 GMT
    """
    return dt.strftime('%a, %d %b %Y %H:%M:%S GMT')


def validate_bucket_name(name: str) -> tuple:
    """
    Validate S3 bucket name according to AWS rules.

    Returns: (is_valid, error_message)
    """
    if not name:
        return False, "Bucket name cannot be empty"

    if len(name) < 3 or len(name) > 63:
        return False, "Bucket name must be between 3 and 63 characters"

    if not re.match(r'^[a-z0-9]', name) or not re.match(r'.*[a-z0-9]$', name):
        return False, "Bucket name must start and end with a letter or number"

    if not _BUCKET_NAME_RE.match(name):
        return False, "Bucket name can only contain lowercase letters, numbers, dots, and hyphens"

    if '..' in name:
        return False, "Bucket name cannot have consecutive periods"

    if _IP_ADDRESS_RE.match(name):
        return False, "Bucket name cannot be formatted as IP address"

    return True, None


def is_streaming_upload() -> bool:
    """True when the body is framed as aws-chunked"""
    content_sha = request.headers.get('X-Amz-Content-Sha256', '')
    content_encoding = request.headers.get('Content-Encoding', '')
    return content_sha.startswith('STREAMING-') or 'aws-chunked' in content_encoding.lower()


def get_body_stream() -> BinaryIO:
    """
    Request body as a readable stream.

    Picks up the copy buffered during authentication when there is one and
    strips aws-chunked framing.
    """
    buffered = g.get('s3_buffered_body')
    stream = io.BytesIO(buffered) if buffered is not None else request.stream
    if is_streaming_upload():
        return AwsChunkedReader(stream)
    return stream


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def parse_complete_manifest(body: bytes) -> List[Tuple[int, str]]:
    """
    Parse a CompleteMultipartUpload document into (part number, etag) pairs.

    Order is preserved; the namespace, if any, is ignored.
    """
    try:
        root = fromstring(body)
    except ParseError:
        raise InvalidRequestError(
            'The XML you provided was not well-formed', code='MalformedXML'
        ) from None

    manifest = []
    for part in root.iter():
        if _local_name(part.tag) != 'Part':
            continue
        fields = {_local_name(child.tag): (child.text or '').strip() for child in part}
        try:
            manifest.append((int(fields['PartNumber']), fields['ETag']))
        except (KeyError, ValueError):
            raise InvalidRequestError(
                'Each Part needs a PartNumber and an ETag', code='MalformedXML'
            ) from None

    if not manifest:
        raise InvalidRequestError('The manifest names no parts', code='MalformedXML')
    return manifest

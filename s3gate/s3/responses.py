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

""" S3 XML/JSON Response Builders """

import json
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from xml.etree.ElementTree import Element, SubElement, tostring

from flask import Response, g, has_request_context, request

from .errors import S3Error
from .utils import format_http_date


S3_NAMESPACE = 'http://s3.amazonaws.com/doc/2006-03-01/'
REQUEST_ID_HEADER = 'x-amz-request-id'
XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>\n'

Fields = Iterable[Tuple[str, Optional[str]]]


def _create_root(tag: str) -> Element:
    """Root element in the S3 namespace"""
    return Element(tag, xmlns=S3_NAMESPACE)


def _fill(parent: Element, fields: Fields) -> Element:
    """Append one child per (tag, text) pair, in order"""
    for tag, text in fields:
        SubElement(parent, tag).text = text
    return parent


def _add_owner(parent: Element, owner_id: str, display_name: str) -> None:
    _fill(SubElement(parent, 'Owner'), [('ID', owner_id), ('DisplayName', display_name)])


def _s3_timestamp(dt: datetime) -> str:
    # ISO 8601 with millisecond precision, always UTC
    return dt.strftime('%Y-%m-%dT%H:%M:%S.000Z')


def _wants_json() -> bool:
    """?format=json selects JSON bodies; anything else is XML"""
    if not has_request_context():
        return False
    return request.args.get('format', 'xml').lower() == 'json'


def get_request_id() -> str:
    """Request id of the current exchange, minted on first use"""
    if not has_request_context():
        return uuid.uuid4().hex.upper()
    if 's3_request_id' not in g:
        g.s3_request_id = uuid.uuid4().hex.upper()
    return g.s3_request_id


def _xml(root: Element, status_code: int = 200) -> Response:
    return Response(
        XML_DECLARATION + tostring(root, encoding='utf-8'),
        status=status_code,
        mimetype='application/xml',
    )


def _json(payload: Dict, status_code: int = 200) -> Response:
    return Response(json.dumps(payload, indent=2), status=status_code, mimetype='application/json')


def error_response(code: str, message: str, resource: str = '',
                   status_code: int = 400) -> Response:
    """
    Uniform error document.

    Every error carries the request id, both in the body and in the
    x-amz-request-id header:

        <Error>
            <Code>NoSuchKey</Code>
            <Message>The specified key does not exist.</Message>
            <Resource>/bkt/missing.txt</Resource>
            <RequestId>9F1C...</RequestId>
        </Error>

    With ?format=json the same fields are nested under "error".
    """
    request_id = get_request_id()

    if _wants_json():
        response = _json({'error': {
            'code': code,
            'message': message,
            'resource': resource,
            'requestId': request_id,
        }}, status_code)
    else:
        root = _fill(Element('Error'), [
            ('Code', code),
            ('Message', message),
            ('Resource', resource),
            ('RequestId', request_id),
        ])
        response = _xml(root, status_code)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def s3_error_response(error: S3Error, resource: str = '') -> Response:
    """Render an S3Error raised by a handler"""
    return error_response(
        error.code, error.message,
        resource=resource or error.resource,
        status_code=error.status_code,
    )


def list_buckets_response(buckets: List, owner_id: str = '',
                          owner_display_name: str = '') -> Response:
    """
    ListAllMyBucketsResult: owner block, then one Bucket per directory.

    The JSON form is just the names: {"buckets": ["bkt", ...]}
    """
    if _wants_json():
        return _json({'buckets': [bucket.name for bucket in buckets]})

    root = _create_root('ListAllMyBucketsResult')
    _add_owner(root, owner_id, owner_display_name)

    container = SubElement(root, 'Buckets')
    for bucket in buckets:
        _fill(SubElement(container, 'Bucket'), [
            ('Name', bucket.name),
            ('CreationDate', _s3_timestamp(bucket.creation_date)),
        ])

    return _xml(root)


def list_objects_response(bucket: str, result, prefix: str = '', delimiter: str = '',
                          max_keys: int = 1000, owner_id: str = '',
                          owner_display_name: str = '',
                          storage_class: str = 'STANDARD') -> Response:
    """
    ListBucketResult for one directory level (or a whole subtree).

    Files become Contents entries carrying owner and storage class;
    subdirectories become CommonPrefixes ending in '/'. Listings are never
    truncated, so KeyCount is simply objects plus prefixes.
    """
    key_count = len(result.objects) + len(result.common_prefixes)

    if _wants_json():
        return _json({
            'name': bucket,
            'prefix': prefix,
            'delimiter': delimiter,
            'maxKeys': max_keys,
            'keyCount': key_count,
            'isTruncated': False,
            'contents': [{
                'key': entry.key,
                'lastModified': _s3_timestamp(entry.modified),
                'etag': entry.etag,
                'size': entry.size,
                'storageClass': storage_class,
            } for entry in result.objects],
            'commonPrefixes': [{'prefix': name} for name in result.common_prefixes],
        })

    root = _fill(_create_root('ListBucketResult'), [
        ('Name', bucket),
        ('Prefix', prefix),
        ('Delimiter', delimiter),
        ('MaxKeys', str(max_keys)),
        ('KeyCount', str(key_count)),
        ('IsTruncated', 'false'),
    ])

    for entry in result.objects:
        contents = _fill(SubElement(root, 'Contents'), [
            ('Key', entry.key),
            ('LastModified', _s3_timestamp(entry.modified)),
            ('ETag', entry.etag),
            ('Size', str(entry.size)),
        ])
        _add_owner(contents, owner_id, owner_display_name)
        SubElement(contents, 'StorageClass').text = storage_class

    for name in result.common_prefixes:
        _fill(SubElement(root, 'CommonPrefixes'), [('Prefix', name)])

    return _xml(root)


def location_response(region: str) -> Response:
    root = _create_root('LocationConstraint')
    root.text = region
    return _xml(root)


def empty_response(status_code: int = 200, headers: Dict = None) -> Response:
    """Body-less response; Content-Length is left for werkzeug to fill in"""
    return Response(status=status_code, headers=headers or {})


def create_bucket_response(location: str, created: bool) -> Response:
    """201 for a new bucket, 200 when it already existed"""
    return empty_response(201 if created else 200, {'Location': location})


def delete_response() -> Response:
    return empty_response(204)


def _object_headers(content_type: str, content_length: int, etag: str,
                    last_modified: Optional[datetime]) -> Dict:
    headers = {
        'Content-Type': content_type,
        'Content-Length': str(content_length),
        'Accept-Ranges': 'bytes',
    }
    if etag:
        headers['ETag'] = etag
    if last_modified is not None:
        headers['Last-Modified'] = format_http_date(last_modified)
    return headers


def head_response(content_length: int = 0, content_type: str = 'application/octet-stream',
                  etag: str = '', last_modified: datetime = None) -> Response:
    """
    Object metadata without a body.

    Content-Length describes the stored object, not this response.
    """
    return Response(
        status=200,
        headers=_object_headers(content_type, content_length, etag, last_modified),
    )


def get_object_response(body: bytes, content_type: str = 'application/octet-stream',
                        etag: str = '', last_modified: datetime = None) -> Response:
    return Response(
        body,
        status=200,
        headers=_object_headers(content_type, len(body), etag, last_modified),
    )


def put_object_response(etag: str = '', status_code: int = 200) -> Response:
    """ETag header for stored objects; directory markers carry none"""
    return empty_response(status_code, {'ETag': etag} if etag else None)


def initiate_multipart_upload_response(bucket: str, key: str,
                                       upload_id: str) -> Response:
    if _wants_json():
        return _json({'bucket': bucket, 'key': key, 'uploadId': upload_id})

    return _xml(_fill(_create_root('InitiateMultipartUploadResult'), [
        ('Bucket', bucket),
        ('Key', key),
        ('UploadId', upload_id),
    ]))


def upload_part_response(etag: str) -> Response:
    return empty_response(200, {'ETag': etag})


def complete_multipart_upload_response(bucket: str, key: str,
                                       location: str, etag: str) -> Response:
    """
    CompleteMultipartUploadResult; the ETag (MD5 of the assembled object) is
    repeated as a header.
    """
    if _wants_json():
        response = _json({'location': location, 'bucket': bucket, 'key': key, 'etag': etag})
    else:
        response = _xml(_fill(_create_root('CompleteMultipartUploadResult'), [
            ('Location', location),
            ('Bucket', bucket),
            ('Key', key),
            ('ETag', etag),
        ]))

    response.headers['ETag'] = etag
    return response


def list_parts_response(bucket: str, key: str, upload_id: str, parts: List,
                        storage_class: str = 'STANDARD',
                        max_parts: int = 1000) -> Response:
    """
    ListPartsResult with the parts received so far, in part-number order.
    """
    if _wants_json():
        return _json({
            'bucket': bucket,
            'key': key,
            'uploadId': upload_id,
            'storageClass': storage_class,
            'maxParts': max_parts,
            'isTruncated': False,
            'parts': [{
                'partNumber': part.part_number,
                'lastModified': _s3_timestamp(part.last_modified),
                'etag': part.etag,
                'size': part.size,
            } for part in parts],
        })

    root = _fill(_create_root('ListPartsResult'), [
        ('Bucket', bucket),
        ('Key', key),
        ('UploadId', upload_id),
        ('StorageClass', storage_class),
        ('MaxParts', str(max_parts)),
        ('IsTruncated', 'false'),
    ])
    for part in parts:
        _fill(SubElement(root, 'Part'), [
            ('PartNumber', str(part.part_number)),
            ('LastModified', _s3_timestamp(part.last_modified)),
            ('ETag', part.etag),
            ('Size', str(part.size)),
        ])

    return _xml(root)

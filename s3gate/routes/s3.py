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

""" S3-Compatible API Routes """

import logging
import re

import flask

from ..s3 import responses
from ..s3.auth import s3_auth_required
from ..s3.errors import InvalidRequestError, NotFoundError, S3Error
from ..s3.utils import parse_bucket_and_key
from ..s3.handlers.bucket import BucketHandler
from ..s3.handlers.object import ObjectHandler
from ..s3.handlers.multipart import MultipartHandler

log = logging.getLogger(__name__)


S3_METHODS = ["GET", "HEAD", "PUT", "DELETE", "POST"]

_UPLOAD_ID_RE = re.compile(r'^\d+$')

# Query parameters that only shape the response, not the listing
_PRESENTATION_ARGS = frozenset(['format'])

bp = flask.Blueprint("s3", __name__)


@bp.after_request
def add_request_id(response):
    response.headers.setdefault(responses.REQUEST_ID_HEADER, responses.get_request_id())
    return response


def _gateway():
    return flask.current_app.extensions['s3gate']


def _list_query(args) -> bool:
    return any(name not in _PRESENTATION_ARGS for name in args)


def _list_objects(handler: BucketHandler, bucket: str, key: str):
    """Listing for GET on a bucket, a directory key or an explicit prefix"""
    args = flask.request.args
    delimiter = args.get('delimiter', '')

    if key:
        prefix = key
    else:
        prefix = args.get('prefix', '')
        if delimiter:
            prefix = prefix.replace(delimiter, '/')

    recursive = not delimiter and _list_query(args)
    return handler.list_objects(
        bucket, prefix, delimiter=delimiter, recursive=recursive
    )


def handle_get(gateway, bucket: str, key: str):
    args = flask.request.args
    buckets = BucketHandler(gateway.objects, gateway.config)

    if not bucket:
        return buckets.list_buckets()

    if not key and 'location' in args:
        return buckets.get_bucket_location(bucket)

    if key and 'uploadId' in args:
        return MultipartHandler(gateway.multipart, gateway.config).list_parts(
            bucket, key, args.get('uploadId')
        )

    if not key or 'prefix' in args:
        return _list_objects(buckets, bucket, key)

    entry = gateway.objects.stat_key(bucket, key)
    if entry is not None and entry.is_dir:
        return _list_objects(buckets, bucket, key)

    return ObjectHandler(gateway.objects).get_object(bucket, key)


def handle_head(gateway, bucket: str, key: str):
    args = flask.request.args
    objects = ObjectHandler(gateway.objects)

    target = key or args.get('prefix', '')
    if not target:
        return BucketHandler(gateway.objects, gateway.config).head_bucket(bucket)

    entry = gateway.objects.stat_key(bucket, target)
    if entry is None:
        raise NotFoundError('The resource you requested does not exist', resource=target)

    if entry.is_dir or 'prefix' in args:
        return objects.head_prefix(bucket, target)

    return objects.head_object(bucket, key)


def handle_put(gateway, bucket: str, key: str):
    args = flask.request.args

    if not key:
        return BucketHandler(gateway.objects, gateway.config).create_bucket(bucket)

    if 'uploadId' in args and 'partNumber' in args:
        return MultipartHandler(gateway.multipart, gateway.config).upload_part(
            bucket, key, args.get('uploadId'), args.get('partNumber')
        )

    return ObjectHandler(gateway.objects).put_object(bucket, key)


def handle_delete(gateway, bucket: str, key: str):
    args = flask.request.args

    if not key:
        return BucketHandler(gateway.objects, gateway.config).delete_bucket(bucket)

    if 'uploadId' in args:
        return MultipartHandler(gateway.multipart, gateway.config).abort_multipart_upload(
            bucket, key, args.get('uploadId')
        )

    return ObjectHandler(gateway.objects).delete_object(bucket, key)


def handle_post(gateway, bucket: str, key: str):
    args = flask.request.args
    handler = MultipartHandler(gateway.multipart, gateway.config)

    if 'uploads' in args:
        return handler.create_multipart_upload(bucket, key)

    if _UPLOAD_ID_RE.match(args.get('uploadId', '')):
        return handler.complete_multipart_upload(bucket, key, args.get('uploadId'))

    raise InvalidRequestError('Unsupported POST operation')


HANDLERS = {
    'GET': handle_get,
    'HEAD': handle_head,
    'PUT': handle_put,
    'DELETE': handle_delete,
    'POST': handle_post,
}


@bp.route("/", defaults={"path": ""}, methods=S3_METHODS, endpoint="s3_root")
@bp.route("/<path:path>", methods=S3_METHODS, endpoint="s3_operations")
@s3_auth_required
def s3_operations(path: str):  # pylint: disable=W0613
    """All S3 operations; bucket and key come from the request path"""
    request = flask.request
    bucket, key = parse_bucket_and_key(request.path)

    try:
        if not bucket and request.method != 'GET':
            raise InvalidRequestError(
                'The specified bucket is not valid.', code='InvalidBucketName'
            )
        return HANDLERS[request.method](_gateway(), bucket, key)

    except S3Error as e:
        log.info("S3 %s %s failed: %s %s", request.method, request.path, e.code, e.message)
        return responses.s3_error_response(e, resource=request.path)

    except Exception as e:  # pylint: disable=W0703
        log.exception("S3 %s %s error", request.method, request.path)
        return responses.error_response(
            'InternalError', str(e), resource=request.path, status_code=500
        )

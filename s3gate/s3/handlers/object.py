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

""" S3 Object Operations Handler """

from flask import Response

from ..responses import (
    put_object_response,
    get_object_response,
    head_response,
    delete_response,
    empty_response,
)
from ..utils import get_body_stream


class ObjectHandler:
    """Handler for S3 object operations"""

    def __init__(self, objects):
        self.objects = objects

    def put_object(self, bucket_name: str, key: str) -> Response:
        """
        Upload an object, or create a directory when the key ends in '/'.

        S3 Operation: PUT /{bucket}/{key}
        """
        if key.endswith('/'):
            result = self.objects.put_object(bucket_name, key, None, is_directory_marker=True)
            return put_object_response(status_code=201 if result.created else 200)

        result = self.objects.put_object(bucket_name, key, get_body_stream())
        return put_object_response(etag=result.etag)

    def get_object(self, bucket_name: str, key: str) -> Response:
        """
        S3 Operation: GET /{bucket}/{key}
        """
        obj = self.objects.get_object(bucket_name, key)
        return get_object_response(
            body=obj.body,
            content_type=obj.content_type,
            etag=obj.etag,
            last_modified=obj.modified
        )

    def head_object(self, bucket_name: str, key: str) -> Response:
        """
        S3 Operation: HEAD /{bucket}/{key}
        """
        obj = self.objects.head_object(bucket_name, key)
        return head_response(
            content_length=obj.size,
            content_type=obj.content_type,
            etag=obj.etag,
            last_modified=obj.modified
        )

    def head_prefix(self, bucket_name: str, key: str) -> Response:
        """
        Directories and explicit prefixes answer HEAD with an empty 200.

        S3 Operation: HEAD /{bucket}/{prefix}/
        """
        self.objects.require_bucket(bucket_name)
        return empty_response(200)

    def delete_object(self, bucket_name: str, key: str) -> Response:
        """
        Delete a file, or a directory that has no children.

        S3 Operation: DELETE /{bucket}/{key}
        """
        self.objects.delete_object(bucket_name, key)
        return delete_response()

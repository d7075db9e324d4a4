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

""" S3 Bucket Operations Handler """

from flask import Response

from ..responses import (
    list_buckets_response,
    list_objects_response,
    location_response,
    create_bucket_response,
    delete_response,
    empty_response,
)


class BucketHandler:
    """Handler for S3 bucket operations"""

    def __init__(self, objects, config):
        """
        Initialize the bucket handler.

        Args:
            objects: ObjectStore over the bucket root
            config: GatewayConfig supplying owner, region and storage class
        """
        self.objects = objects
        self.config = config

    def list_buckets(self) -> Response:
        """
        List all buckets.

        S3 Operation: GET /
        """
        return list_buckets_response(
            buckets=self.objects.list_buckets(),
            owner_id=self.config.user_id,
            owner_display_name=self.config.user_name
        )

    def create_bucket(self, bucket_name: str) -> Response:
        """
        Create a new bucket; repeating the call is not an error.

        S3 Operation: PUT /{bucket}
        """
        created = self.objects.create_bucket(bucket_name)
        return create_bucket_response(f'/{bucket_name}', created)

    def head_bucket(self, bucket_name: str) -> Response:
        """
        S3 Operation: HEAD /{bucket}
        """
        self.objects.head_bucket(bucket_name)
        return empty_response(200, {'x-amz-bucket-region': self.config.region})

    def delete_bucket(self, bucket_name: str) -> Response:
        """
        Delete an empty bucket.

        S3 Operation: DELETE /{bucket}
        """
        self.objects.delete_bucket(bucket_name)
        return delete_response()

    def get_bucket_location(self, bucket_name: str) -> Response:
        """
        S3 Operation: GET /{bucket}?location
        """
        self.objects.head_bucket(bucket_name)
        return location_response(self.config.region)

    def list_objects(self, bucket_name: str, prefix: str = '', delimiter: str = '',
                     recursive: bool = False) -> Response:
        """
        List the objects and common prefixes under a prefix.

        S3 Operation: GET /{bucket}?prefix=...&delimiter=/
        """
        result = self.objects.list_objects(bucket_name, prefix, recursive=recursive)
        return list_objects_response(
            bucket=bucket_name,
            result=result,
            prefix=prefix,
            delimiter=delimiter,
            owner_id=self.config.user_id,
            owner_display_name=self.config.user_name,
            storage_class=self.config.storage_class,
        )

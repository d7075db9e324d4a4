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

""" S3 Multipart Upload Operations Handler """

from flask import request, Response

from ..errors import InvalidRequestError
from ..responses import (
    initiate_multipart_upload_response,
    upload_part_response,
    complete_multipart_upload_response,
    list_parts_response,
    delete_response,
)
from ..utils import get_body_stream, parse_complete_manifest


class MultipartHandler:
    """Handler for S3 multipart upload operations"""

    def __init__(self, coordinator, config):
        """
        Initialize the multipart handler.

        Args:
            coordinator: MultipartCoordinator owning the upload table
            config: GatewayConfig supplying the storage class label
        """
        self.coordinator = coordinator
        self.config = config

    def create_multipart_upload(self, bucket_name: str, key: str) -> Response:
        """
        Initiate a multipart upload.

        S3 Operation: POST /{bucket}/{key}?uploads

        Returns an upload ID to use for subsequent parts.
        """
        upload_id = self.coordinator.initiate(bucket_name, key)
        return initiate_multipart_upload_response(
            bucket=bucket_name,
            key=key,
            upload_id=upload_id
        )

    def upload_part(self, bucket_name: str, key: str, upload_id: str,
                    part_number: str) -> Response:
        """
        Upload a part of a multipart upload.

        S3 Operation: PUT /{bucket}/{key}?partNumber=N&uploadId=X
        """
        try:
            number = int(part_number)
        except (TypeError, ValueError):
            raise InvalidRequestError(
                'Part number must be an integer', resource=str(part_number)
            ) from None

        etag = self.coordinator.upload_part(bucket_name, upload_id, key, number, get_body_stream())
        return upload_part_response(etag)

    def complete_multipart_upload(self, bucket_name: str, key: str, upload_id: str) -> Response:
        """
        Complete a multipart upload by assembling the parts.

        S3 Operation: POST /{bucket}/{key}?uploadId=X

        Request body contains XML with list of parts and ETags; the parts are
        joined in the order the document lists them.
        """
        manifest = parse_complete_manifest(request.get_data())
        etag = self.coordinator.complete(bucket_name, key, upload_id, manifest)
        return complete_multipart_upload_response(
            bucket=bucket_name,
            key=key,
            location=f'/{bucket_name}/{key}',
            etag=etag
        )

    def abort_multipart_upload(self, bucket_name: str, key: str, upload_id: str) -> Response:
        """
        Abort a multipart upload and clean up parts.

        S3 Operation: DELETE /{bucket}/{key}?uploadId=X
        """
        self.coordinator.abort(bucket_name, key, upload_id)
        return delete_response()

    def list_parts(self, bucket_name: str, key: str, upload_id: str) -> Response:
        """
        List parts uploaded so far.

        S3 Operation: GET /{bucket}/{key}?uploadId=X
        """
        record = self.coordinator.list_parts(bucket_name, key, upload_id)
        return list_parts_response(
            bucket=bucket_name,
            key=key,
            upload_id=upload_id,
            parts=record.sorted_parts(),
            storage_class=self.config.storage_class,
        )

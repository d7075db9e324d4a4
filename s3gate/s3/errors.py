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

""" S3 error taxonomy """

from enum import Enum


class S3Error(Exception):
    """
    Base class for errors surfaced to S3 clients.

    Every subclass maps onto one HTTP status; the ``code`` is the
    machine-readable S3 error code rendered into the XML error document.
    """

    status_code = 500
    default_code = 'InternalError'

    def __init__(self, message: str, code: str = None, resource: str = ''):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.resource = resource


class AccessDenied(S3Error):
    """Request rejected by the signature verifier"""
    status_code = 403
    default_code = 'AccessDenied'


class NotFoundError(S3Error):
    """No such bucket, key or upload"""
    status_code = 404
    default_code = 'NoSuchKey'


class ConflictError(S3Error):
    """Request conflicts with the current state of the namespace"""
    status_code = 409
    default_code = 'Conflict'


class InvalidRequestError(S3Error):
    """Malformed or unsupported request"""
    status_code = 400
    default_code = 'InvalidArgument'


class InternalError(S3Error):
    """I/O or hashing failure"""
    status_code = 500
    default_code = 'InternalError'


class SigV4ErrorCode(Enum):
    """Which step of Signature V4 verification failed"""
    EMPTY_AUTH_HEADER = 'EmptyAuthHeader'
    UNSUPPORTED_ALGORITHM = 'UnsupportedAlgorithm'
    MISSING_FIELDS = 'MissingFields'
    MISSING_CREDENTIAL_TAG = 'MissingCredentialTag'
    MISSING_SIGNED_HEADERS_TAG = 'MissingSignedHeadersTag'
    MISSING_SIGNATURE_TAG = 'MissingSignatureTag'
    MALFORMED_CREDENTIAL = 'MalformedCredential'
    MALFORMED_CREDENTIAL_DATE = 'MalformedCredentialDate'
    HOST_NOT_SIGNED = 'HostNotSigned'
    UNSIGNED_HEADER_MISSING = 'UnsignedHeaderMissing'
    BAD_KEY = 'BadKey'
    MISSING_DATE_HEADER = 'MissingDateHeader'
    MALFORMED_DATE = 'MalformedDate'
    SIGNATURE_MISMATCH = 'SignatureDoesNotMatch'


class SigV4Error(AccessDenied):
    """Signature V4 verification failure tagged with the failing step"""

    def __init__(self, kind: SigV4ErrorCode, detail: str = ''):
        message = kind.value if not detail else f'{kind.value}: {detail}'
        super().__init__(message)
        self.kind = kind

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

""" AWS Signature Version 4 Authentication for S3-compatible API """

import hmac
import hashlib
import logging
import re
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union
from urllib.parse import parse_qs, parse_qsl, urlencode

from flask import current_app, g, request

from .errors import SigV4Error, SigV4ErrorCode

log = logging.getLogger(__name__)


ALGORITHM = 'AWS4-HMAC-SHA256'
SCOPE_TERMINATOR = 'aws4_request'
SERVICE_NAME = 's3'
ISO8601_FORMAT = '%Y%m%dT%H%M%SZ'
YYYYMMDD_FORMAT = '%Y%m%d'

EMPTY_SHA256 = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
UNSIGNED_PAYLOAD = 'UNSIGNED-PAYLOAD'
STREAMING_PAYLOAD = 'STREAMING-AWS4-HMAC-SHA256-PAYLOAD'

_RESERVED_OBJECT_NAMES = re.compile(r'^[a-zA-Z0-9\-_.~/]+$')
_UNRESERVED_MARKS = frozenset('-_.~/')
_ISO8601_RE = re.compile(r'^\d{8}T\d{6}Z$')
_YYYYMMDD_RE = re.compile(r'^\d{8}$')
_WHITESPACE_RE = re.compile(r'\s+')


class CredentialScope(NamedTuple):
    """Signing scope: date/region/service/request"""
    date: datetime
    region: str
    service: str
    request: str


class Credential(NamedTuple):
    """Parsed Credential= element of the Authorization header"""
    access_key: str
    scope: CredentialScope

    def scope_string(self) -> str:
        return '/'.join([
            self.scope.date.strftime(YYYYMMDD_FORMAT),
            self.scope.region,
            self.scope.service,
            self.scope.request,
        ])


class SignV4Values(NamedTuple):
    """Parsed AWS Signature V4 components"""
    credential: Credential
    signed_headers: List[str]
    signature: str


class RequestView(NamedTuple):
    """
    The parts of a live HTTP request the verifier looks at.

    ``headers`` must offer a case-insensitive ``getlist(name)``, as the
    werkzeug header containers do. ``read_body`` is only called by the
    payload re-hash branch.
    """
    method: str
    path: str
    query_string: str
    headers: Any
    host: str
    content_length: Optional[int] = None
    transfer_encoding: Tuple[str, ...] = ()
    read_body: Callable[[], bytes] = bytes


def sign(key: bytes, msg: str) -> bytes:
    """HMAC-SHA256 signing helper"""
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()


def get_signature_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """
    Derive the signing key for AWS Signature Version 4.

    The signing key is derived from the secret access key through a series of
    HMAC-SHA256 operations: kSecret -> kDate -> kRegion -> kService -> kSigning
    """
    k_date = sign(('AWS4' + secret_key).encode('utf-8'), date_stamp)
    k_region = sign(k_date, region)
    k_service = sign(k_region, service)
    k_signing = sign(k_service, SCOPE_TERMINATOR)
    return k_signing


def hash_payload(payload: bytes) -> str:
    """Calculate SHA256 hash of the payload"""
    return hashlib.sha256(payload).hexdigest()


def parse_iso8601(value: str) -> datetime:
    """Strict YYYYMMDDTHHMMSSZ parser; raises ValueError on anything else"""
    if not _ISO8601_RE.match(value):
        raise ValueError(f'not an ISO8601 basic timestamp: {value!r}')
    return datetime.strptime(value, ISO8601_FORMAT).replace(tzinfo=timezone.utc)


def _split_tagged(element: str, tag: str, missing_tag: SigV4ErrorCode) -> str:
    fields = element.strip().split('=')
    if len(fields) != 2:
        raise SigV4Error(SigV4ErrorCode.MISSING_FIELDS, element)
    if fields[0] != tag:
        raise SigV4Error(missing_tag, fields[0])
    return fields[1]


def parse_credential_header(element: str) -> Credential:
    """
    Parse the Credential element.

    Format: Credential=ACCESS_KEY/YYYYMMDD/REGION/SERVICE/aws4_request
    """
    value = _split_tagged(element, 'Credential', SigV4ErrorCode.MISSING_CREDENTIAL_TAG)
    parts = value.strip().split('/')
    if len(parts) != 5:
        raise SigV4Error(SigV4ErrorCode.MALFORMED_CREDENTIAL, value)

    access_key, date, region, service, request_type = parts
    if not _YYYYMMDD_RE.match(date):
        raise SigV4Error(SigV4ErrorCode.MALFORMED_CREDENTIAL_DATE, date)
    try:
        scope_date = datetime.strptime(date, YYYYMMDD_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise SigV4Error(SigV4ErrorCode.MALFORMED_CREDENTIAL_DATE, date) from None

    return Credential(
        access_key=access_key,
        scope=CredentialScope(
            date=scope_date,
            region=region,
            service=service,
            request=request_type,
        )
    )


def parse_signed_headers(element: str) -> List[str]:
    """Parse SignedHeaders=h1;h2;... into an ordered list"""
    value = _split_tagged(element, 'SignedHeaders', SigV4ErrorCode.MISSING_SIGNED_HEADERS_TAG)
    if not value:
        raise SigV4Error(SigV4ErrorCode.MISSING_FIELDS, 'SignedHeaders')
    return value.split(';')


def parse_signature(element: str) -> str:
    """Parse Signature=hex"""
    value = _split_tagged(element, 'Signature', SigV4ErrorCode.MISSING_SIGNATURE_TAG)
    if not value:
        raise SigV4Error(SigV4ErrorCode.MISSING_FIELDS, 'Signature')
    return value


def parse_authorization_header(auth_header: str) -> SignV4Values:
    """
    Parse AWS Signature V4 Authorization header.

    Format: AWS4-HMAC-SHA256 Credential=ACCESS_KEY/DATE/REGION/SERVICE/aws4_request,
            SignedHeaders=host;x-amz-content-sha256;x-amz-date,
            Signature=SIGNATURE

    Clients differ in how they space the parameters, so all whitespace is
    removed before splitting.
    """
    compact = _WHITESPACE_RE.sub('', auth_header or '')
    if not compact:
        raise SigV4Error(SigV4ErrorCode.EMPTY_AUTH_HEADER)

    if not compact.startswith(ALGORITHM):
        raise SigV4Error(SigV4ErrorCode.UNSUPPORTED_ALGORITHM)

    fields = compact[len(ALGORITHM):].split(',')
    if len(fields) != 3:
        raise SigV4Error(SigV4ErrorCode.MISSING_FIELDS, f'{len(fields)} fields')

    return SignV4Values(
        credential=parse_credential_header(fields[0]),
        signed_headers=parse_signed_headers(fields[1]),
        signature=parse_signature(fields[2]),
    )


def extract_signed_headers(signed_headers: List[str], req: RequestView) -> Dict[str, List[str]]:
    """
    Pull the values of every signed header out of the request.

    A handful of headers may not survive the trip through the WSGI server
    or may be signed by clients that deviate from the protocol; those get
    their values reconstructed from the request itself.
    """
    if 'host' not in signed_headers:
        raise SigV4Error(SigV4ErrorCode.HOST_NOT_SIGNED)

    extracted: Dict[str, List[str]] = {}
    for header in signed_headers:
        values = req.headers.getlist(header)
        if values:
            extracted.setdefault(header, []).extend(values)
            continue

        if header == 'expect':
            # aws-cli signs Expect even when the server swallows it; the only
            # legal expectation is 100-continue.
            extracted[header] = ['100-continue']
        elif header == 'host':
            extracted[header] = [req.host]
        elif header == 'transfer-encoding':
            extracted[header] = list(req.transfer_encoding)
        elif header == 'content-length':
            # Excluded by the signing protocol, but some clients sign it anyway
            extracted[header] = [str(_content_length(req))]
        else:
            raise SigV4Error(SigV4ErrorCode.UNSIGNED_HEADER_MISSING, header)

    return extracted


def _content_length(req: RequestView) -> int:
    if 'chunked' in req.transfer_encoding:
        return -1
    return req.content_length or 0


def encode_path(path: str) -> str:
    """
    Percent-encode a request path for the canonical request.

    Each code point outside the unreserved set becomes one %XX group per
    byte of its UTF-8 encoding.
    """
    if _RESERVED_OBJECT_NAMES.match(path):
        return path

    encoded = []
    for char in path:
        if ('A' <= char <= 'Z' or 'a' <= char <= 'z' or '0' <= char <= '9'
                or char in _UNRESERVED_MARKS):
            encoded.append(char)
            continue
        try:
            raw = char.encode('utf-8')
        except UnicodeEncodeError:
            return path
        encoded.extend(f'%{byte:02X}' for byte in raw)
    return ''.join(encoded)


def _trim_all(value: str) -> str:
    """Trim ends and compress inner whitespace runs to a single space"""
    return ' '.join(value.split())


def _normalized(headers: Mapping[str, Union[str, List[str]]]) -> Dict[str, List[str]]:
    result: Dict[str, List[str]] = {}
    for name, values in headers.items():
        if isinstance(values, str):
            values = [values]
        result.setdefault(name.lower(), []).extend(values)
    return result


def canonical_headers(headers: Mapping[str, Union[str, List[str]]]) -> str:
    """
    Get canonical headers.

    - Lowercase header names
    - Sort by header name
    - Comma-join multiple values, each trimmed and whitespace-collapsed
    """
    normalized = _normalized(headers)
    lines = []
    for name in sorted(normalized):
        value = ','.join(_trim_all(v) for v in normalized[name])
        lines.append(f'{name}:{value}\n')
    return ''.join(lines)


def signed_header_names(headers: Mapping[str, Union[str, List[str]]]) -> str:
    """Sorted, semicolon-separated list of lowercase header names"""
    return ';'.join(sorted(_normalized(headers)))


def canonical_query(raw_query: str) -> str:
    """
    Re-encode a raw query string with its parameters sorted by name.

    Values of a repeated parameter keep their arrival order. Spaces come
    out as '+', which the canonical request then rewrites to %20.
    """
    pairs = parse_qsl(raw_query, keep_blank_values=True)
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs)


def canonical_request(headers: Mapping[str, Union[str, List[str]]], payload_hash: str,
                      query: str, path: str, method: str) -> str:
    """
    Create the canonical request string.

    Format:
    HTTPMethod\n
    CanonicalURI\n
    CanonicalQueryString\n
    CanonicalHeaders\n
    SignedHeaders\n
    HashedPayload
    """
    return '\n'.join([
        method,
        encode_path(path),
        query.replace('+', '%20'),
        canonical_headers(headers),
        signed_header_names(headers),
        payload_hash,
    ])


def string_to_sign(canonical: str, timestamp: datetime, scope: str) -> str:
    """
    Create the string to sign.

    Format:
    Algorithm\n
    RequestDateTime\n
    CredentialScope\n
    HashedCanonicalRequest
    """
    hashed_canonical = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return '\n'.join([
        ALGORITHM,
        timestamp.strftime(ISO8601_FORMAT),
        scope,
        hashed_canonical,
    ])


def calculate_signature(secret_key: str, timestamp: datetime, region: str,
                        service: str, to_sign: str) -> str:
    """Calculate the AWS Signature V4 signature"""
    signing_key = get_signature_key(
        secret_key, timestamp.strftime(YYYYMMDD_FORMAT), region, service
    )
    return hmac.new(signing_key, to_sign.encode('utf-8'), hashlib.sha256).hexdigest()


def compare_signatures(expected: str, supplied: str) -> bool:
    """Constant-time comparison of two hex signatures"""
    return hmac.compare_digest(expected.encode('utf-8'), supplied.encode('utf-8'))


def is_presigned(req: RequestView) -> bool:
    return 'X-Amz-Credential' in parse_qs(req.query_string, keep_blank_values=True)


def get_payload_hash(req: RequestView) -> str:
    """
    Get the hash of the request payload as asserted by the client.

    Presigned requests carry it in the query (falling back to the header)
    and default to UNSIGNED-PAYLOAD. Header-signed requests default to the
    hash of an empty body.
    """
    if is_presigned(req):
        query_value = parse_qs(req.query_string, keep_blank_values=True).get('X-Amz-Content-Sha256')
        if query_value:
            return query_value[0]
        header_value = req.headers.getlist('X-Amz-Content-Sha256')
        return header_value[0] if header_value else UNSIGNED_PAYLOAD

    header_value = req.headers.getlist('X-Amz-Content-Sha256')
    return header_value[0] if header_value else EMPTY_SHA256


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignatureVerifier:
    """Verifies Signature V4 requests against the single configured credential"""

    def __init__(self, config, clock: Callable[[], datetime] = None):
        self.access_key_id = config.access_key_id
        self._secret_key = config.secret_access_key.get_secret_value()
        self._clock = clock or _utcnow

    def verify(self, req: RequestView) -> SignV4Values:
        """
        Verify the request signature; raises SigV4Error naming the failed step.
        """
        payload_hash = get_payload_hash(req)

        auth_header = ','.join(req.headers.getlist('Authorization'))
        values = parse_authorization_header(auth_header)

        extracted = extract_signed_headers(values.signed_headers, req)

        if values.credential.access_key != self.access_key_id:
            raise SigV4Error(SigV4ErrorCode.BAD_KEY)

        date_values = req.headers.getlist('X-Amz-Date') or req.headers.getlist('Date')
        if not date_values or not date_values[0]:
            raise SigV4Error(SigV4ErrorCode.MISSING_DATE_HEADER)
        try:
            timestamp = parse_iso8601(date_values[0])
        except ValueError:
            raise SigV4Error(SigV4ErrorCode.MALFORMED_DATE, date_values[0]) from None

        # Only reachable for a credential scoped to a non-s3 service; the
        # gateway never issues one, so this stays inert in practice.
        if values.credential.scope.service != SERVICE_NAME and payload_hash == EMPTY_SHA256:
            body = req.read_body()
            if body:
                payload_hash = hash_payload(body)

        canonical = canonical_request(
            extracted, payload_hash, canonical_query(req.query_string), req.path, req.method
        )
        to_sign = string_to_sign(canonical, timestamp, values.credential.scope_string())

        expected = calculate_signature(
            self._secret_key,
            self._clock(),
            values.credential.scope.region,
            values.credential.scope.service,
            to_sign,
        )

        if not compare_signatures(expected, values.signature):
            log.debug("Canonical request:\n%s", canonical)
            raise SigV4Error(SigV4ErrorCode.SIGNATURE_MISMATCH)

        return values

    def authenticate(self, req: RequestView) -> Tuple[bool, Optional[SigV4Error]]:
        """
        Authenticate a request.

        Returns:
            Tuple of (True, None) on success
            Tuple of (False, SigV4Error) on failure
        """
        try:
            self.verify(req)
        except SigV4Error as e:
            return False, e
        return True, None


def request_view(flask_request) -> RequestView:
    """Build the verifier's view of a Flask request"""

    def read_body() -> bytes:
        data = flask_request.get_data(cache=True)
        # The stream is spent now; handlers pick the buffered copy up from g
        g.s3_buffered_body = data
        return data

    transfer_encoding = tuple(
        item.strip().lower()
        for item in flask_request.headers.get('Transfer-Encoding', '').split(',')
        if item.strip()
    )

    return RequestView(
        method=flask_request.method,
        path=flask_request.path,
        query_string=flask_request.query_string.decode('utf-8', 'replace'),
        headers=flask_request.headers,
        host=flask_request.host,
        content_length=flask_request.content_length,
        transfer_encoding=transfer_encoding,
        read_body=read_body,
    )


def s3_auth_required(f):
    """
    Decorator to require S3 authentication for a route.

    Returns S3 error response on failure.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from .responses import error_response

        verifier = current_app.extensions['s3gate'].verifier
        ok, error = verifier.authenticate(request_view(request))

        if not ok:
            log.warning("S3 auth failed for %s %s: %s", request.method, request.path, error.message)
            return error_response(
                code='AccessDenied',
                message='Access Denied',
                resource=request.path,
                status_code=403
            )

        return f(*args, **kwargs)

    return decorated_function

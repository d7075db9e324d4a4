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
aws-chunked body decoding

Streaming uploads frame the payload as

    <hex size>;chunk-signature=<64 hex>\\r\\n<data>\\r\\n
    ...
    0;chunk-signature=<64 hex>\\r\\n[trailers]\\r\\n

Chunk signatures are skipped, not verified.
"""

from typing import BinaryIO

from .errors import InvalidRequestError


MAX_HEADER_LINE = 4096


class AwsChunkedReader:
    """File-like reader yielding the decoded payload of an aws-chunked stream"""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._remaining = 0
        self._done = False

    def _readline(self) -> bytes:
        line = self._stream.readline(MAX_HEADER_LINE)
        if not line.endswith(b'\n'):
            raise InvalidRequestError('Truncated aws-chunked header', code='IncompleteBody')
        return line.rstrip(b'\r\n')

    def _expect_crlf(self) -> None:
        if self._stream.read(2) != b'\r\n':
            raise InvalidRequestError('Malformed aws-chunked framing', code='IncompleteBody')

    def _next_chunk(self) -> None:
        header = self._readline()
        size_field = header.split(b';', 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise InvalidRequestError(
                f'Bad aws-chunked size {size_field!r}', code='IncompleteBody'
            ) from None

        if size == 0:
            # Drain trailers up to the blank line
            while self._stream.readline(MAX_HEADER_LINE).strip():
                pass
            self._done = True
            return
        self._remaining = size

    def read(self, size: int = -1) -> bytes:
        out = bytearray()
        while not self._done and (size < 0 or len(out) < size):
            if self._remaining == 0:
                self._next_chunk()
                continue

            want = self._remaining if size < 0 else min(self._remaining, size - len(out))
            data = self._stream.read(want)
            if not data:
                raise InvalidRequestError('Truncated aws-chunked payload', code='IncompleteBody')
            out.extend(data)
            self._remaining -= len(data)
            if self._remaining == 0:
                self._expect_crlf()
        return bytes(out)

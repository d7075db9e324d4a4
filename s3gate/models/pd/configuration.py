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

""" Gateway Configuration Model """

import base64
import logging
import secrets
import uuid
from typing import Optional
from xml.etree.ElementTree import ParseError, parse

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

log = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = './config.xml'

# XML element -> GatewayConfig field
XML_FIELDS = {
    'AccessKeyId': 'access_key_id',
    'SecretAccessKey': 'secret_access_key',
    'Region': 'region',
    'Port': 'port',
    'UploadsPath': 'uploads_path',
    'BucketsPath': 'buckets_path',
}


def generate_base64_str(length: int) -> str:
    """``length`` characters of base64 text drawn from random bytes"""
    return base64.b64encode(secrets.token_bytes(length)).decode('ascii')[:length]


class GatewayConfig(BaseModel):
    """
    Resolved gateway configuration.

    Built once at startup and handed to every component; never mutated.
    """
    model_config = ConfigDict(frozen=True)

    access_key_id: str = Field(default_factory=lambda: generate_base64_str(10))
    secret_access_key: SecretStr = Field(default_factory=lambda: SecretStr(generate_base64_str(32)))
    region: str = 'us-east-1'
    buckets_path: str = './buckets/'
    uploads_path: str = './uploads/'
    port: int = 8080
    user_name: str = 's3user@amazon.com'
    user_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    storage_class: str = 'STANDARD'


def read_config_file(path: str) -> dict:
    """
    Values set in an XML config file.

    <root>
        <AccessKeyId>...</AccessKeyId>
        <SecretAccessKey>...</SecretAccessKey>
        <Region>us-east-1</Region>
        <Port>8080</Port>
        <UploadsPath>./uploads/</UploadsPath>
        <BucketsPath>./buckets/</BucketsPath>
    </root>

    Empty elements and a Port of 0 count as unset. A missing or unreadable
    file yields no values.
    """
    log.info("Reading configuration from %s", path)
    try:
        root = parse(path).getroot()
    except (OSError, ParseError) as e:
        log.warning("Error reading config file %s: %s", path, e)
        return {}

    values = {}
    for element, field in XML_FIELDS.items():
        node = root.find(element)
        if node is None or not (node.text or '').strip():
            continue
        text = node.text.strip()
        if field == 'port':
            try:
                port = int(text)
            except ValueError:
                log.warning("Ignoring non-numeric Port %r in %s", text, path)
                continue
            if port == 0:
                continue
            values[field] = port
        else:
            values[field] = text
    return values


def load_configuration(path: Optional[str] = DEFAULT_CONFIG_PATH, **overrides) -> GatewayConfig:
    """
    Resolve the configuration: defaults, then file values, then overrides.

    Overrides set to None are ignored so that unset command-line flags do not
    mask file values.
    """
    values = read_config_file(path) if path else {}
    values.update({name: value for name, value in overrides.items() if value is not None})
    try:
        return GatewayConfig(**values)
    except ValidationError:
        log.error("Invalid configuration values: %s", sorted(values))
        raise

#!/usr/bin/python3
# coding=utf-8

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

""" Command line entry point """

import argparse
import logging

from .models.pd.configuration import DEFAULT_CONFIG_PATH, load_configuration
from .module import create_app

log = logging.getLogger(__name__)


LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='s3gate',
        description='S3-compatible gateway serving a local directory tree',
        allow_abbrev=False,
    )
    parser.add_argument('-p', dest='port', type=int, help='Port to listen on (default 8080)')
    parser.add_argument('-dir_uploads', dest='uploads_path',
                        help='temp dir to store upload parts (default ./uploads/)')
    parser.add_argument('-dir_buckets', dest='buckets_path',
                        help='dir to store buckets (default ./buckets/)')
    parser.add_argument('-user_name', dest='user_name', help='AWS S3 user name')
    parser.add_argument('-user_id', dest='user_id', help='AWS S3 user ID')
    parser.add_argument('-key_id', dest='access_key_id', help='Access Key ID')
    parser.add_argument('-key_val', dest='secret_access_key', help='Secret Access Key')
    parser.add_argument('-region', dest='region', help='S3 region (default us-east-1)')
    parser.add_argument('-config', dest='config', default=DEFAULT_CONFIG_PATH,
                        help='configuration file')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    overrides = vars(args)
    config_path = overrides.pop('config')
    config = load_configuration(config_path, **overrides)

    app = create_app(config)
    log.info("Listening on port %s", config.port)
    app.run(host='0.0.0.0', port=config.port, threaded=True)


if __name__ == '__main__':
    main()

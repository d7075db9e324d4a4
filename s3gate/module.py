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

""" Application module """

import logging

import flask

from .models.pd.configuration import GatewayConfig
from .routes.s3 import bp as s3_blueprint
from .s3.auth import SignatureVerifier
from .storage.backend import BackingStore, LocalFilesystemStore
from .storage.locks import KeyLocks
from .storage.multipart import MultipartCoordinator
from .storage.objects import ObjectStore

log = logging.getLogger(__name__)


class Gateway:  # pylint: disable=R0903
    """ Components the S3 routes work with """

    def __init__(self, config: GatewayConfig, clock=None,
                 bucket_store: BackingStore = None, upload_store: BackingStore = None):
        self.config = config
        self.verifier = SignatureVerifier(config, clock=clock)
        self.bucket_store = bucket_store or LocalFilesystemStore(config.buckets_path)
        self.upload_store = upload_store or LocalFilesystemStore(config.uploads_path)
        self.key_locks = KeyLocks()
        self.objects = ObjectStore(self.bucket_store)
        self.multipart = MultipartCoordinator(self.objects, self.upload_store, self.key_locks)


def _ensure_root(path: str) -> None:
    store = LocalFilesystemStore(path)
    if store.create_dir(''):
        log.info("Created directory %s", path)


def create_app(config: GatewayConfig, clock=None,
               bucket_store: BackingStore = None, upload_store: BackingStore = None) -> flask.Flask:
    """ Build the Flask application serving the S3 API """
    log.info("Initializing s3gate")

    if bucket_store is None:
        _ensure_root(config.buckets_path)
    if upload_store is None:
        _ensure_root(config.uploads_path)

    app = flask.Flask(__name__)
    # Keys may legitimately contain '//'; never redirect them away
    app.url_map.merge_slashes = False
    app.extensions['s3gate'] = Gateway(
        config, clock=clock, bucket_store=bucket_store, upload_store=upload_store
    )
    app.register_blueprint(s3_blueprint)

    log.info("s3gate ready: buckets=%s uploads=%s access_key_id=%s region=%s",
             config.buckets_path, config.uploads_path, config.access_key_id, config.region)
    return app

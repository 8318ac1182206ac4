#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# nhttp-server - Lightweight static file server for the local network
# Copyright (C) 2025-2026 nhttp-server contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os

from datetime import timedelta

import bitmath

from nhttp.Kernel import Singleton, getLogger

DEFAULT_STATIC_ROOT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'static')

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 8000

# Transfer chunk size (256 KiB) - used for file, range and compressed streaming
TRANSFER_CHUNK_SIZE = int(os.getenv('TRANSFER_CHUNK_SIZE', 256 * 1024))

# Concurrent stat() calls while building a directory listing
LISTING_WORKERS = int(os.getenv('NHTTP_LISTING_WORKERS', 8))

# Seconds in-flight requests may keep running after a termination signal
SHUTDOWN_GRACE_PERIOD = float(os.getenv('NHTTP_SHUTDOWN_GRACE', 5.0))

CACHE_MAX_AGE = int(timedelta(hours=1).total_seconds())
STATIC_CACHE_MAX_AGE = int(timedelta(days=1).total_seconds())

ARCHIVE_COMPRESS_LEVEL = 9

AUTH_COOKIE_NAME = 'nhttp_auth_token'
AUTH_COOKIE_MAX_AGE = int(timedelta(days=7).total_seconds())

MAX_UPLOAD_FILES = 100
MAX_UPLOAD_FILE_SIZE = int(bitmath.GiB(1).bytes)

# MIME types worth compressing when --compress is enabled
COMPRESSIBLE_TYPES = (
    'text/html',
    'text/plain',
    'text/css',
    'text/javascript',
    'text/xml',
    'text/markdown',
    'text/csv',
    'application/javascript',
    'application/json',
    'application/xml',
    'application/xml+rss',
    'image/svg+xml',
)

logger = getLogger(__name__)


# Singleton
class SettingsGetter(Singleton):
    """
    Server-wide configuration. Set once at startup and read-only afterwards;
    every request handler reads from the same instance.
    """

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            raise RuntimeError('Get SettingsGetter before initialized it.')
        return cls._instances[cls]

    def initialize(
        self,
        rootDir=None,
        host=DEFAULT_HOST,
        port=DEFAULT_PORT,
        compress=False,
        cors=False,
        authCodes=None,
        devMode=None,
        confineSymlinks=False,
        staticRoot=DEFAULT_STATIC_ROOT,
        chunkSize=TRANSFER_CHUNK_SIZE,
        listingWorkers=LISTING_WORKERS,
        shutdownGracePeriod=SHUTDOWN_GRACE_PERIOD,
        cookieSecret=None,
    ):
        """Initialize the SettingsGetter with the serving root and feature flags."""
        if rootDir is None:
            rootDir = os.getcwd()

        # Root is stored without trailing separator so prefix checks stay exact
        self._rootDir = os.path.normpath(os.path.abspath(rootDir))
        self._host = host
        self._port = port
        self._compress = bool(compress)
        self._cors = bool(cors)
        self._authCodes = tuple(code for code in (authCodes or ()) if code)
        self._devMode = os.getenv('NHTTP_DEV') == 'True' if devMode is None else bool(devMode)
        self._confineSymlinks = bool(confineSymlinks)
        self._staticRoot = os.path.normpath(os.path.abspath(staticRoot))
        self._chunkSize = max(1, int(chunkSize))
        self._listingWorkers = max(1, int(listingWorkers))
        self._shutdownGracePeriod = max(0.0, float(shutdownGracePeriod))
        self._cookieSecret = cookieSecret or os.getenv('NHTTP_COOKIE_SECRET')

        logger.debug(
            f"Settings initialized: root={self._rootDir}, compress={self._compress}, cors={self._cors}, "
            f"auth={self.authEnabled}, dev={self._devMode}"
        )

    @property
    def rootDir(self):
        return self._rootDir

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def compress(self):
        return self._compress

    @property
    def cors(self):
        return self._cors

    @property
    def authCodes(self):
        return self._authCodes

    @property
    def authEnabled(self):
        return bool(self._authCodes)

    @property
    def devMode(self):
        return self._devMode

    @property
    def confineSymlinks(self):
        return self._confineSymlinks

    @property
    def staticRoot(self):
        return self._staticRoot

    @property
    def chunkSize(self):
        return self._chunkSize

    @property
    def listingWorkers(self):
        return self._listingWorkers

    @property
    def shutdownGracePeriod(self):
        return self._shutdownGracePeriod

    @property
    def cookieSecret(self):
        return self._cookieSecret

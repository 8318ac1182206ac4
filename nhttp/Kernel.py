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
import logging
import threading

import sentry_sdk

from sentry_sdk.integrations.logging import SentryHandler, LoggingIntegration
from sentry_sdk.integrations import atexit as sentryAtexit

PUBLIC_VERSION = '1.2.0'

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
SENTRY_FORMAT = '%(asctime)s version[%(version)s] : %(message)s'

LOG_LEVEL_MAPPING = {name: getattr(logging, name) for name in ('DEBUG', 'INFO', 'WARNING', 'ERROR')}


def configureGlobalLogLevel(logLevel):
    """
    Set the root level and make sure console output uses LOG_FORMAT.
    Sentry handlers are left alone.
    """
    root = logging.getLogger()
    root.setLevel(logLevel)
    formatter = logging.Formatter(LOG_FORMAT)

    consoles = [h for h in root.handlers if isinstance(h, logging.StreamHandler) and not isinstance(h, SentryHandler)]
    if not root.handlers:
        console = logging.StreamHandler()
        root.addHandler(console)
        consoles = [console]

    for console in consoles:
        console.setLevel(logLevel)
        console.setFormatter(formatter)


_envLevel = os.getenv('NHTTP_LOGGING_LEVEL', '').upper()
if _envLevel in LOG_LEVEL_MAPPING:
    configureGlobalLogLevel(LOG_LEVEL_MAPPING[_envLevel])


def _initSentry():
    # Opt-in: nothing leaves the machine unless NHTTP_SENTRY_DSN is set
    if sentry_sdk.get_client().is_active():
        return True

    dsn = os.getenv('NHTTP_SENTRY_DSN')
    if not dsn:
        return False

    # Quiet exit, no "sending pending events" banner
    sentryAtexit.default_callback = lambda pending, timeout: None

    sentry_sdk.init(
        dsn=dsn,
        release=f'nhttp-server@{PUBLIC_VERSION}',
        default_integrations=False,
        integrations=[LoggingIntegration(), sentryAtexit.AtexitIntegration()],
    )
    return True


def _attachSentry(logger):
    for handler in logger.handlers:
        if isinstance(handler, SentryHandler):
            return

    sentryHandler = SentryHandler()
    sentryHandler.setFormatter(logging.Formatter(SENTRY_FORMAT))
    logger.addHandler(sentryHandler)


def getLogger(name, version=PUBLIC_VERSION):
    """
    Module logger. With Sentry active it is wrapped in a LoggerAdapter that
    stamps the release version on every record.
    """
    logger = logging.getLogger(name)
    try:
        if not _initSentry():
            return logger
        _attachSentry(logger)
    except Exception as e:
        logger.warning(f"Sentry unavailable, using plain logging: {e}")
        return logger

    return logging.LoggerAdapter(logger, {'version': version or 'unknown'})


class Singleton:
    """
    One shared instance per subclass. initialize() runs on first construction
    only; later calls return the same object untouched.
    """

    _instances = {}
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        instance = cls._instances.get(cls)
        if instance is None:
            with cls._lock:
                instance = cls._instances.setdefault(cls, super().__new__(cls))
        return instance

    def __init__(self, *args, **kwargs):
        if getattr(self, '_initialized', False):
            return
        self.initialize(*args, **kwargs)
        self._initialized = True

    def initialize(self, *args, **kwargs):
        pass

    @classmethod
    def getInstance(cls):
        return cls._instances.get(cls) or cls()

    @classmethod
    def resetInstance(cls):
        """Forget the shared instance so the next construction starts fresh."""
        with cls._lock:
            cls._instances.pop(cls, None)

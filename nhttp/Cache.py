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
import stat
import enum

from dataclasses import dataclass

from nhttp.Kernel import getLogger
from nhttp.Settings import CACHE_MAX_AGE
from nhttp.Utils import httpDate, parseHttpDate

logger = getLogger(__name__)


@dataclass(frozen=True)
class FileMetadata:
    size: int
    mtime: float
    isDir: bool
    extension: str = ''

    @property
    def isFile(self):
        return not self.isDir

    @classmethod
    def fromStat(cls, path, st):
        isDir = stat.S_ISDIR(st.st_mode)
        extension = '' if isDir else os.path.splitext(path)[1].lower()
        return cls(size=0 if isDir else st.st_size, mtime=st.st_mtime, isDir=isDir, extension=extension)


def makeValidator(meta):
    """Strong validator derived from size and mtime, e.g. '"100-1700000000000"'."""
    return f'"{meta.size}-{int(meta.mtime * 1000)}"'


class CacheDecision(enum.Enum):
    NOT_MODIFIED = 'not-modified'
    MODIFIED = 'modified'


def _matchesETag(ifNoneMatch, validator):
    for candidate in ifNoneMatch.split(','):
        candidate = candidate.strip()
        if candidate.startswith('W/'):
            candidate = candidate[2:]
        if candidate == '*' or candidate == validator:
            return True
    return False


class ConditionalCache:
    """
    Evaluates If-None-Match / If-Modified-Since against fresh metadata.

    Either condition is enough for a 304.
    """

    def __init__(self, maxAge=CACHE_MAX_AGE):
        self.maxAge = maxAge

    def evaluate(self, meta, ifNoneMatch=None, ifModifiedSince=None):
        validator = makeValidator(meta)

        if ifNoneMatch and _matchesETag(ifNoneMatch, validator):
            return CacheDecision.NOT_MODIFIED

        # HTTP dates only carry whole seconds
        since = parseHttpDate(ifModifiedSince)
        if since is not None and since >= int(meta.mtime):
            return CacheDecision.NOT_MODIFIED

        return CacheDecision.MODIFIED

    def headers(self, meta):
        return {
            'ETag': makeValidator(meta),
            'Last-Modified': httpDate(meta.mtime),
            'Cache-Control': f'public, max-age={self.maxAge}',
        }

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
"""
Turns request paths into filesystem paths confined to the serving root.
"""

import os

from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote_to_bytes

from nhttp.Kernel import getLogger
from nhttp.Utils import toUnicode

logger = getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    """An absolute path that is the serving root or one of its descendants."""
    path: str
    urlPath: str # Decoded, normalized URL path, always starts with '/'

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def isRoot(self) -> bool:
        return self.urlPath == '/'


def isWithinRoot(path: str, root: str) -> bool:
    """
    Segment-wise containment check: '/srv' contains '/srv' and '/srv/a',
    but not '/srv-evil'.
    """
    if path == root:
        return True

    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def splitUrlPath(rawPath: str) -> Optional[list]:
    """
    Decode and normalize a raw URL path into its segments.

    Returns None when the path tries to climb above the root or contains
    characters that can never name a file (NUL).
    """
    path = rawPath.split('?', 1)[0].split('#', 1)[0]

    decoded = toUnicode(unquote_to_bytes(path), throw=False)
    if decoded is None or '\x00' in decoded:
        return None

    segments = []
    for segment in decoded.replace('\\', '/').split('/'):
        if segment in ('', '.'):
            continue
        if segment == '..':
            if not segments:
                return None
            segments.pop()
            continue
        segments.append(segment)

    return segments


class PathResolver:
    """
    Resolves request paths against a fixed root directory.

    resolve() returns None for anything that would leave the root; the caller
    answers those with 403 Forbidden instead of clamping to the root.
    """

    def __init__(self, root: str, confineSymlinks: bool = False):
        self.root = os.path.normpath(os.path.abspath(root))
        self.confineSymlinks = confineSymlinks
        self._realRoot = os.path.realpath(self.root)

    def resolve(self, rawPath: str) -> Optional[ResolvedPath]:
        segments = splitUrlPath(rawPath or '/')
        if segments is None:
            logger.warning(f"Rejected path outside root: {rawPath!r}")
            return None

        # Drive letters and absolute fragments inside a segment cannot be joined safely
        if any(os.path.isabs(segment) or os.sep in segment or os.path.splitdrive(segment)[0] for segment in segments):
            logger.warning(f"Rejected path with absolute segment: {rawPath!r}")
            return None

        fullPath = os.path.normpath(os.path.join(self.root, *segments)) if segments else self.root

        if not isWithinRoot(fullPath, self.root):
            logger.warning(f"Rejected path outside root: {rawPath!r} -> {fullPath}")
            return None

        if self.confineSymlinks and os.path.lexists(fullPath):
            realPath = os.path.realpath(fullPath)
            if not isWithinRoot(realPath, self._realRoot):
                logger.warning(f"Rejected symlink escaping root: {rawPath!r} -> {realPath}")
                return None

        urlPath = '/' + '/'.join(segments)
        return ResolvedPath(path=fullPath, urlPath=urlPath)

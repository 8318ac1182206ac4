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
import time

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from nhttp.Kernel import getLogger
from nhttp.Settings import LISTING_WORKERS

logger = getLogger(__name__)

INDEX_FILE = 'index.html'


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    isDir: bool
    size: int
    mtime: float
    ext: str


def entrySortKey(entry):
    """Directories first, then case-insensitive name, ties broken by the raw name."""
    return (not entry.isDir, entry.name.casefold(), entry.name)


def findIndex(path):
    indexPath = os.path.join(path, INDEX_FILE)
    if os.path.isfile(indexPath):
        return indexPath
    return None


def _statEntry(dirEntry):
    try:
        isDir = dirEntry.is_dir()
        st = dirEntry.stat()
        return DirectoryEntry(
            name=dirEntry.name,
            isDir=isDir,
            size=0 if isDir else st.st_size,
            mtime=st.st_mtime,
            ext='' if isDir else os.path.splitext(dirEntry.name)[1].lower(),
        )
    except OSError as e:
        # Broken symlinks and files removed mid-listing still show up
        logger.warning(f"Cannot stat {dirEntry.path}: {e}")
        try:
            isDir = dirEntry.is_dir(follow_symlinks=False)
        except OSError:
            isDir = False
        return DirectoryEntry(
            name=dirEntry.name,
            isDir=isDir,
            size=0,
            mtime=time.time(),
            ext='' if isDir else os.path.splitext(dirEntry.name)[1].lower(),
        )


def listDirectory(path, maxWorkers=LISTING_WORKERS):
    """
    List one directory level with per-entry metadata.

    scandir() failures (missing directory, permission) propagate to the caller.
    """
    with os.scandir(path) as it:
        dirEntries = list(it)

    if not dirEntries:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(maxWorkers, len(dirEntries)))) as executor:
        entries = list(executor.map(_statEntry, dirEntries))

    entries.sort(key=entrySortKey)
    return entries


def summarize(entries):
    dirCount = sum(1 for entry in entries if entry.isDir)
    files = [entry for entry in entries if not entry.isDir]
    return {
        'dirCount': dirCount,
        'fileCount': len(files),
        'totalSize': sum(entry.size for entry in files),
    }

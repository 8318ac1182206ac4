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
On-the-fly zip archives of a directory, written straight into the response.

zipfile falls back to data descriptors when its file object cannot tell() or
seek(), so nothing is buffered on disk and no Content-Length is known up front.
"""

import os
import zipfile

from http import HTTPStatus

from nhttp.Kernel import getLogger
from nhttp.Settings import ARCHIVE_COMPRESS_LEVEL
from nhttp.Utils import percentEncode

logger = getLogger(__name__)

ROOT_ARCHIVE_NAME = 'archive'


class _ResponseSink:
    """Write-only file object over a ResponseWriter. Deliberately has no tell()/seek()."""

    def __init__(self, writer):
        self.writer = writer
        self.written = 0
        self.discarding = False

    def write(self, data):
        # zipfile still finalizes on close() after a failure; none of that reaches the client
        if not self.discarding:
            self.writer.write(data)
            self.written += len(data)
        return len(data)

    def flush(self):
        if not self.discarding:
            self.writer.flush()


def archiveName(resolved):
    if resolved.isRoot:
        return ROOT_ARCHIVE_NAME
    return resolved.name or ROOT_ARCHIVE_NAME


def iterArchiveMembers(path, folderName):
    """
    Yield (filesystem path, arcname) pairs in sorted walk order, directories
    included so empty ones survive extraction.
    """
    yield path, folderName + '/'

    def onError(error):
        logger.warning(f"Skipping unreadable directory {error.filename}: {error}")

    for dirPath, dirNames, fileNames in os.walk(path, onerror=onError):
        dirNames.sort()
        fileNames.sort()

        relDir = os.path.relpath(dirPath, path)
        base = folderName if relDir == '.' else f"{folderName}/{relDir.replace(os.sep, '/')}"

        for name in dirNames:
            yield os.path.join(dirPath, name), f"{base}/{name}/"
        for name in fileNames:
            filePath = os.path.join(dirPath, name)
            # Sockets and FIFOs would block or fail mid-entry
            if not os.path.isfile(filePath):
                logger.debug(f"Skipping special file {filePath}")
                continue
            yield filePath, f"{base}/{name}"


class Archiver:

    def __init__(self, compressLevel=ARCHIVE_COMPRESS_LEVEL):
        self.compressLevel = compressLevel

    def headers(self, resolved):
        zipName = percentEncode(f"{archiveName(resolved)}.zip")
        return {
            'Content-Type': 'application/zip',
            'Content-Disposition': f'attachment; filename="{zipName}"',
            'Cache-Control': 'no-cache',
            'Connection': 'close',
        }

    def stream(self, resolved, writer, method='GET'):
        """
        Send the archive response for a resolved directory.

        Errors raised after the headers went out propagate to the caller, which
        must abort the connection instead of finishing a truncated 200. The
        central directory is withheld in that case.
        """
        writer.sendHead(HTTPStatus.OK, self.headers(resolved))
        if method == 'HEAD':
            return

        folderName = archiveName(resolved)
        sink = _ResponseSink(writer)
        fileCount = 0

        zf = zipfile.ZipFile(
            sink,
            mode='w',
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compressLevel,
            strict_timestamps=False,
        )
        try:
            for memberPath, arcname in iterArchiveMembers(resolved.path, folderName):
                before = sink.written
                try:
                    zf.write(memberPath, arcname)
                except ConnectionError:
                    raise
                except OSError as e:
                    # Only safe to skip when nothing of this member reached the stream
                    if sink.written != before:
                        raise
                    logger.warning(f"Skipping unreadable file {memberPath}: {e}")
                    continue

                if not arcname.endswith('/'):
                    fileCount += 1
        except BaseException:
            # No end record, so a cut archive never passes for a complete one
            sink.discarding = True
            raise
        finally:
            zf.close()

        writer.flush()
        logger.info(f"Archived {resolved.urlPath} ({fileCount} files, {sink.written} bytes)")

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
Multipart uploads into a folder below the serving root.

The body is fed to python-multipart's streaming parser in chunkSize pieces.
Each file part is written to a hidden temporary file beside its destination
and renamed into place once the part is complete, so a failed upload never
leaves a half written file under its real name.
"""

import os
import secrets
import posixpath

from dataclasses import dataclass
from http import HTTPStatus
from urllib.parse import quote

from python_multipart import MultipartParser
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from nhttp.Errors import BadRequestError, ForbiddenError, NotFoundError, PayloadTooLargeError, ServeError
from nhttp.Kernel import getLogger
from nhttp.Paths import isWithinRoot
from nhttp.Settings import MAX_UPLOAD_FILES, MAX_UPLOAD_FILE_SIZE, TRANSFER_CHUNK_SIZE
from nhttp.Utils import formatSize, toUnicode

logger = getLogger(__name__)

UPLOAD_PATH = '/upload'
FILES_FIELD = 'files'
TARGET_FIELD = 'uploadPath'
MAX_FIELD_SIZE = 64 * 1024
TEMP_PREFIX = '.nhttp-upload-'


def sanitizeFileName(rawName):
    """Last component of a client supplied file name, or None when nothing usable is left."""
    name = toUnicode(rawName, throw=False) if isinstance(rawName, bytes) else rawName
    if not name:
        return None

    # Old browsers send the full client side path
    name = name.replace('\\', '/').rsplit('/', 1)[-1].strip()
    if name in ('', '.', '..') or '\x00' in name:
        return None
    return name


@dataclass(frozen=True)
class UploadedFile:
    name: str
    size: int
    path: str # URL path of the stored file


class _Part:

    def __init__(self):
        self.headers = {}
        self.kind = 'field' # 'field', 'file' or 'skip'
        self.name = ''
        self.value = bytearray()
        self.fileName = None
        self.stream = None
        self.tempPath = None
        self.finalPath = None
        self.size = 0


class _UploadSession:
    """Parser callbacks and state for one request body."""

    def __init__(self, resolver, maxFiles, maxFileSize):
        self.resolver = resolver
        self.maxFiles = maxFiles
        self.maxFileSize = maxFileSize

        self.fields = {}
        self.stored = []
        self.finished = False
        self.part = None
        self._target = None
        self._headerField = bytearray()
        self._headerValue = bytearray()

    def callbacks(self):
        return {
            'on_part_begin': self.onPartBegin,
            'on_header_field': self.onHeaderField,
            'on_header_value': self.onHeaderValue,
            'on_header_end': self.onHeaderEnd,
            'on_headers_finished': self.onHeadersFinished,
            'on_part_data': self.onPartData,
            'on_part_end': self.onPartEnd,
            'on_end': self.onEnd,
        }

    def target(self):
        """Folder the files go to. Resolved on the first file part and fixed from then on."""
        if self._target is None:
            requested = self.fields.get(TARGET_FIELD) or '/'
            resolved = self.resolver.resolve(quote(requested))
            if resolved is None:
                raise ForbiddenError('Upload target is outside the shared folder')
            if not os.path.isdir(resolved.path):
                raise NotFoundError('Upload target folder does not exist')
            self._target = resolved
        return self._target

    def onPartBegin(self):
        self.part = _Part()

    def onHeaderField(self, data, start, end):
        self._headerField += data[start:end]

    def onHeaderValue(self, data, start, end):
        self._headerValue += data[start:end]

    def onHeaderEnd(self):
        self.part.headers[bytes(self._headerField).lower()] = bytes(self._headerValue)
        self._headerField = bytearray()
        self._headerValue = bytearray()

    def onHeadersFinished(self):
        part = self.part
        _, params = parse_options_header(part.headers.get(b'content-disposition', b''))
        part.name = toUnicode(params.get(b'name', b''), throw=False) or ''

        rawFileName = params.get(b'filename')
        if rawFileName is None:
            return

        if part.name != FILES_FIELD:
            raise BadRequestError(f'Unexpected file field {part.name!r}')

        # An empty file input still sends a part without a name
        if not rawFileName:
            part.kind = 'skip'
            return

        self.openFile(part, rawFileName)

    def openFile(self, part, rawFileName):
        if len(self.stored) >= self.maxFiles:
            raise BadRequestError(f'At most {self.maxFiles} files per upload')

        fileName = sanitizeFileName(rawFileName)
        if fileName is None:
            raise BadRequestError('Invalid file name')

        target = self.target()
        finalPath = os.path.join(target.path, fileName)
        if not isWithinRoot(finalPath, target.path):
            raise ForbiddenError(f'Invalid file name {fileName!r}')
        if os.path.isdir(finalPath):
            raise ServeError(f'A folder named {fileName} already exists', HTTPStatus.CONFLICT)

        tempPath = os.path.join(target.path, TEMP_PREFIX + secrets.token_hex(8))
        part.stream = open(tempPath, 'xb')
        part.kind = 'file'
        part.fileName = fileName
        part.tempPath = tempPath
        part.finalPath = finalPath

    def onPartData(self, data, start, end):
        part = self.part
        chunk = data[start:end]

        if part.kind == 'file':
            part.size += len(chunk)
            if part.size > self.maxFileSize:
                raise PayloadTooLargeError(f'{part.fileName} exceeds the {formatSize(self.maxFileSize)} upload limit')
            part.stream.write(chunk)
        elif part.kind == 'field':
            part.value += chunk
            if len(part.value) > MAX_FIELD_SIZE:
                raise PayloadTooLargeError(f'Form field {part.name!r} is too large')

    def onPartEnd(self):
        part = self.part
        if part.kind == 'file':
            part.stream.close()
            os.replace(part.tempPath, part.finalPath)

            urlPath = posixpath.join(self._target.urlPath, part.fileName)
            self.stored.append(UploadedFile(part.fileName, part.size, urlPath))
            logger.info(f"Stored upload {urlPath} ({formatSize(part.size)})")
        elif part.kind == 'field':
            self.fields[part.name] = toUnicode(bytes(part.value), throw=False) or ''
        self.part = None

    def onEnd(self):
        self.finished = True

    def discard(self):
        """Drop the temporary file of a part that did not complete."""
        part = self.part
        self.part = None
        if part is None or part.stream is None:
            return

        part.stream.close()
        try:
            os.unlink(part.tempPath)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial upload {part.tempPath}: {e}")


class UploadReceiver:
    """
    Stores the file parts of multipart/form-data requests.

    Files are taken from the 'files' field. The destination folder is the
    'uploadPath' field, which has to come before the files, and defaults to
    the root. It goes through the same PathResolver as downloads. Existing
    files with the same name are replaced.
    """

    def __init__(self, resolver, chunkSize=TRANSFER_CHUNK_SIZE, maxFiles=MAX_UPLOAD_FILES, maxFileSize=MAX_UPLOAD_FILE_SIZE):
        self.resolver = resolver
        self.chunkSize = chunkSize
        self.maxFiles = maxFiles
        self.maxFileSize = maxFileSize

    def receive(self, contentType, contentLength, body):
        """
        Read exactly Content-Length bytes from body and store every file part.

        Returns:
            list[UploadedFile]: stored files in request order.
        """
        ctype, params = parse_options_header(contentType or '')
        boundary = params.get(b'boundary')
        if ctype != b'multipart/form-data' or not boundary:
            raise BadRequestError('Expected a multipart/form-data body')

        if contentLength is None:
            raise ServeError('Content-Length required', HTTPStatus.LENGTH_REQUIRED)
        try:
            remaining = int(contentLength)
        except ValueError:
            raise BadRequestError('Invalid Content-Length')
        if remaining < 0:
            raise BadRequestError('Invalid Content-Length')

        session = _UploadSession(self.resolver, self.maxFiles, self.maxFileSize)
        parser = MultipartParser(boundary, session.callbacks())
        try:
            while remaining > 0:
                chunk = body.read(min(self.chunkSize, remaining))
                if not chunk:
                    raise BadRequestError('Request body ended early')
                parser.write(chunk)
                remaining -= len(chunk)
            parser.finalize()
        except MultipartParseError as e:
            session.discard()
            raise BadRequestError(f'Malformed multipart body: {e}') from e
        except BaseException:
            session.discard()
            raise

        if not session.finished:
            session.discard()
            raise BadRequestError('Multipart body is incomplete')
        if not session.stored:
            raise BadRequestError('No files selected')
        return session.stored

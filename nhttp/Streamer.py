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
The request pipeline that turns a ServeRequest into a response.

ContentStreamer walks every request through the same states:

    Start -> PathResolved -> Stat'd -> DirectoryBranch | FileBranch -> Responded

and lands in Errored from any of them. It only talks to a ResponseWriter, so
it does not depend on http.server and can be driven by tests directly.
"""

import os
import stat
import zlib
import mimetypes

from dataclasses import dataclass, field, replace
from http import HTTPStatus
from urllib.parse import parse_qs

from nhttp.Archive import Archiver
from nhttp.Cache import CacheDecision, ConditionalCache, FileMetadata
from nhttp.Errors import (
    ErrorHandler, ForbiddenError, InternalStreamingError, MethodNotAllowedError,
    NotFoundError, UnsatisfiableRangeError,
)
from nhttp.Kernel import getLogger
from nhttp.Listing import findIndex, listDirectory
from nhttp.Paths import PathResolver
from nhttp.Ranges import RangeKind, negotiateRange
from nhttp.Settings import CACHE_MAX_AGE, COMPRESSIBLE_TYPES
from nhttp.Utils import percentEncode

logger = getLogger(__name__)

# Errors meaning the peer went away; nothing is left to answer.
CLIENT_DISCONNECTS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)

ALLOWED_METHODS = 'GET, HEAD, OPTIONS'

DEFAULT_CONTENT_TYPE = 'application/octet-stream'

# Content-Encoding reported by mimetypes for compressed files, served as the file's own type
ENCODING_CONTENT_TYPES = {
    'gzip': 'application/gzip',
    'bzip2': 'application/x-bzip2',
    'xz': 'application/x-xz',
    'br': 'application/x-brotli',
    'compress': 'application/x-compress',
}

CHARSET_TYPES = ('application/javascript', 'application/json', 'application/xml', 'image/svg+xml')

mimetypes.add_type('text/markdown', '.md')
mimetypes.add_type('text/javascript', '.mjs')
mimetypes.add_type('application/wasm', '.wasm')
mimetypes.add_type('image/webp', '.webp')


def guessContentType(path):
    """Content-Type for a file name, with '; charset=utf-8' for text types."""
    mimeType, encoding = mimetypes.guess_type(path, strict=False)
    if encoding:
        mimeType = ENCODING_CONTENT_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)
    mimeType = mimeType or DEFAULT_CONTENT_TYPE

    if mimeType.startswith('text/') or mimeType in CHARSET_TYPES:
        return f'{mimeType}; charset=utf-8'
    return mimeType


def isCompressible(contentType):
    return contentType.split(';', 1)[0].strip().lower() in COMPRESSIBLE_TYPES


def parseAcceptEncoding(header):
    """Map each listed coding to its q-value. A q of 0 marks an explicit refusal."""
    qualities = {}
    for item in (header or '').split(','):
        coding, _, params = item.strip().partition(';')
        coding = coding.strip().lower()
        if not coding:
            continue

        quality = 1.0
        for param in params.split(';'):
            name, _, value = param.strip().partition('=')
            if name.strip().lower() == 'q':
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0

        qualities[coding] = quality
    return qualities


def chooseEncoding(header):
    """gzip is preferred over deflate whenever both are acceptable."""
    qualities = parseAcceptEncoding(header)
    for coding in ('gzip', 'deflate'):
        if qualities.get(coding, qualities.get('*', 0)) > 0:
            return coding
    return None


def makeCompressor(encoding):
    # wbits 31: gzip container, 15: zlib stream (HTTP "deflate")
    wbits = 31 if encoding == 'gzip' else 15
    return zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, wbits)


def contentDisposition(name):
    encoded = percentEncode(name)
    return f"attachment; filename=\"{encoded}\"; filename*=UTF-8''{encoded}"


@dataclass
class ServeRequest:
    """One inbound request, reduced to what the pipeline needs."""
    method: str
    path: str # Raw, still percent-encoded
    query: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)

    def __post_init__(self):
        self.method = self.method.upper()
        items = self.headers.items() if hasattr(self.headers, 'items') else self.headers
        self.headers = {str(name).lower(): value for name, value in items}

    @classmethod
    def fromTarget(cls, method, target, headers=None):
        """Build from a request target such as '/docs/a.txt?download=1'."""
        path, _, queryString = target.partition('?')
        path = path.split('#', 1)[0]
        return cls(method, path or '/', parse_qs(queryString, keep_blank_values=True), headers or {})

    def header(self, name, default=None):
        return self.headers.get(name.lower(), default)

    def queryValue(self, name, default=None):
        values = self.query.get(name)
        return values[0] if values else default

    @property
    def isHead(self):
        return self.method == 'HEAD'

    @property
    def wantsDownload(self):
        return self.queryValue('download') == '1'

    def withPath(self, path):
        return replace(self, path=path)


class ResponseWriter:
    """
    Response side of the pipeline.

    Subclasses implement writeHead() and writeBody(); this base keeps the
    bookkeeping the access log and error handling rely on.
    """

    def __init__(self):
        self.status = None
        self.headersSent = False
        self.bytesSent = 0
        self.aborted = False

    def sendHead(self, status, headers):
        if self.headersSent:
            raise RuntimeError('Response headers already sent')

        self.status = HTTPStatus(status)
        self.writeHead(self.status, headers)
        self.headersSent = True

    def write(self, data):
        if not data:
            return
        self.writeBody(data)
        self.bytesSent += len(data)

    def flush(self):
        pass

    def abort(self):
        """Drop the connection without completing the response."""
        self.aborted = True

    def writeHead(self, status, headers):
        raise NotImplementedError

    def writeBody(self, data):
        raise NotImplementedError


class ContentStreamer:
    """
    Serves files and directories below one root.

    The same class backs the bundled static assets; listDirectories=False
    turns every directory into a 404 there.
    """

    def __init__(
        self,
        settings,
        renderer,
        root=None,
        maxAge=CACHE_MAX_AGE,
        listDirectories=True,
        errorHandler=None,
    ):
        self.settings = settings
        self.renderer = renderer
        self.resolver = PathResolver(root or settings.rootDir, confineSymlinks=settings.confineSymlinks)
        self.cache = ConditionalCache(maxAge)
        self.archiver = Archiver()
        self.listDirectories = listDirectories
        self.errorHandler = errorHandler or ErrorHandler(showStackTrace=settings.devMode)
        self.chunkSize = settings.chunkSize

    def serve(self, request, writer):
        """Answer a GET or HEAD request. Never raises for request-level failures."""
        try:
            if request.method not in ('GET', 'HEAD'):
                raise MethodNotAllowedError()
            self._serve(request, writer)
        except CLIENT_DISCONNECTS as e:
            logger.debug(f"Client disconnected during {request.method} {request.path}: {e}")
            writer.abort()
        except Exception as e:
            self.handleError(e, request, writer)

        return writer.status

    def handleError(self, error, request, writer):
        if writer.headersSent:
            # Too late for a status page; a truncated body must not look complete
            logger.error(f"{request.method} {request.path} failed after response started: {error!r}")
            writer.abort()
            return

        self.errorHandler.logError(error, request.method, request.path, self.errorHandler.getStatusCode(error))
        try:
            self.sendError(error, request, writer)
        except CLIENT_DISCONNECTS as e:
            logger.debug(f"Client disconnected before error page was sent: {e}")
            writer.abort()

    def sendError(self, error, request, writer):
        serveError = self.errorHandler.toServeError(error)

        if isinstance(serveError, UnsatisfiableRangeError):
            writer.sendHead(serveError.statusCode, {
                'Content-Range': f'bytes */{serveError.size}',
                'Content-Length': '0',
            })
            return

        status, contentType, body = self.errorHandler.render(serveError, request.header('Accept'))
        headers = {
            'Content-Type': contentType,
            'Content-Length': str(len(body)),
            'Cache-Control': 'no-cache',
        }
        if isinstance(serveError, MethodNotAllowedError):
            headers['Allow'] = ALLOWED_METHODS

        writer.sendHead(status, headers)
        if not request.isHead:
            writer.write(body)

    def _serve(self, request, writer):
        resolved = self.resolver.resolve(request.path)
        if resolved is None:
            raise ForbiddenError()

        try:
            st = os.stat(resolved.path)
        except OSError as e:
            raise ErrorHandler.fromOSError(e)

        if stat.S_ISDIR(st.st_mode):
            self.serveDirectory(resolved, request, writer)
        elif stat.S_ISREG(st.st_mode):
            self.serveFile(resolved.path, FileMetadata.fromStat(resolved.path, st), request, writer)
        else:
            # Sockets, FIFOs and devices are never streamed
            raise NotFoundError()

    def serveDirectory(self, resolved, request, writer):
        if not self.listDirectories:
            raise NotFoundError()

        if request.wantsDownload:
            self.archiver.stream(resolved, writer, request.method)
            return

        indexPath = findIndex(resolved.path)
        if indexPath:
            try:
                st = os.stat(indexPath)
            except OSError as e:
                raise ErrorHandler.fromOSError(e)
            self.serveFile(indexPath, FileMetadata.fromStat(indexPath, st), request, writer, allowCompression=False)
            return

        try:
            entries = listDirectory(resolved.path, self.settings.listingWorkers)
        except OSError as e:
            raise ErrorHandler.fromOSError(e)

        try:
            body = self.renderer.render(resolved.urlPath, entries, self.settings.authEnabled).encode('utf-8')
        except Exception as e:
            raise InternalStreamingError('Failed to render directory listing') from e

        writer.sendHead(HTTPStatus.OK, {
            'Content-Type': 'text/html; charset=utf-8',
            'Content-Length': str(len(body)),
        })
        if not request.isHead:
            writer.write(body)

    def serveFile(self, path, meta, request, writer, allowCompression=True):
        headers = self.cache.headers(meta)

        decision = self.cache.evaluate(meta, request.header('If-None-Match'), request.header('If-Modified-Since'))
        if decision is CacheDecision.NOT_MODIFIED:
            writer.sendHead(HTTPStatus.NOT_MODIFIED, headers)
            return

        contentType = guessContentType(path)
        headers['Content-Type'] = contentType
        headers['Accept-Ranges'] = 'bytes'
        if request.wantsDownload:
            headers['Content-Disposition'] = contentDisposition(os.path.basename(path))

        outcome = negotiateRange(request.header('Range'), meta.size)
        if outcome.kind is RangeKind.UNSATISFIABLE:
            raise UnsatisfiableRangeError(meta.size)

        if outcome.kind is RangeKind.SATISFIABLE:
            headers['Content-Range'] = outcome.contentRange
            headers['Content-Length'] = str(outcome.length)
            self._streamWindow(path, outcome.start, outcome.length, HTTPStatus.PARTIAL_CONTENT, headers, request, writer)
            return

        encoding = None
        # Any Range header, even one that was ignored, rules out compression
        if allowCompression and self.settings.compress and isCompressible(contentType) and not request.header('Range'):
            encoding = chooseEncoding(request.header('Accept-Encoding'))

        if encoding:
            headers['Content-Encoding'] = encoding
            headers['Vary'] = 'Accept-Encoding'
            headers['Connection'] = 'close'
            self._streamCompressed(path, encoding, headers, request, writer)
            return

        headers['Content-Length'] = str(meta.size)
        self._streamWindow(path, 0, meta.size, HTTPStatus.OK, headers, request, writer)

    def _streamWindow(self, path, start, length, status, headers, request, writer):
        """Send exactly length bytes starting at start, read in chunkSize pieces."""
        if request.isHead:
            writer.sendHead(status, headers)
            return

        # Open before committing headers so a vanished file is still a 404
        try:
            f = open(path, 'rb')
        except OSError as e:
            raise ErrorHandler.fromOSError(e)

        with f:
            writer.sendHead(status, headers)
            if start:
                f.seek(start)

            remaining = length
            while remaining > 0:
                chunk = f.read(min(self.chunkSize, remaining))
                if not chunk:
                    raise InternalStreamingError(f'{path} shrank while streaming, {remaining} bytes missing')
                writer.write(chunk)
                remaining -= len(chunk)

    def _streamCompressed(self, path, encoding, headers, request, writer):
        if request.isHead:
            writer.sendHead(HTTPStatus.OK, headers)
            return

        try:
            f = open(path, 'rb')
        except OSError as e:
            raise ErrorHandler.fromOSError(e)

        with f:
            writer.sendHead(HTTPStatus.OK, headers)
            compressor = makeCompressor(encoding)
            while True:
                chunk = f.read(self.chunkSize)
                if not chunk:
                    break
                writer.write(compressor.compress(chunk))
            writer.write(compressor.flush())
            writer.flush()

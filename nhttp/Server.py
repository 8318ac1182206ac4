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

import re
import sys
import json
import socket
import threading
import contextlib

from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from dataclasses import asdict
from time import time
from urllib.parse import parse_qs, quote

from nhttp.Auth import createAuthorizer
from nhttp.Errors import UnauthorizedError
from nhttp.Kernel import getLogger, PUBLIC_VERSION
from nhttp.Renderer import Renderer
from nhttp.Settings import SettingsGetter, STATIC_CACHE_MAX_AGE
from nhttp.Streamer import ALLOWED_METHODS, CLIENT_DISCONNECTS, ContentStreamer, ResponseWriter, ServeRequest
from nhttp.Upload import UPLOAD_PATH, UploadReceiver
from nhttp.Utils import formatSize

STATIC_PREFIX = '/static/'
LOGIN_PATH = '/login'
LOGOUT_PATH = '/logout'

MAX_FORM_SIZE = 64 * 1024

# Link previewers and crawlers are kept out of the access log
BOT_PATTERN = re.compile(r'bot|crawl|spider|slurp|facebookexternalhit|preview', re.IGNORECASE)

logger = getLogger(__name__)


def safeRedirect(target):
    """Only same-site absolute paths are followed after login."""
    if not target or not target.startswith('/') or target.startswith('//') or '\\' in target:
        return '/'
    return target


class HTTPResponseWriter(ResponseWriter):
    """ResponseWriter over a BaseHTTPRequestHandler connection."""

    def __init__(self, handler, extraHeaders=None):
        super().__init__()
        self.handler = handler
        self.extraHeaders = extraHeaders or {}

    def writeHead(self, status, headers):
        self.handler.send_response(status)
        # send_header() also flips close_connection on 'Connection: close'
        for name, value in {**headers, **self.extraHeaders}.items():
            self.handler.send_header(name, value)
        self.handler.end_headers()

    def writeBody(self, data):
        self.handler.wfile.write(data)

    def flush(self):
        self.handler.wfile.flush()

    def abort(self):
        super().abort()
        self.handler.close_connection = True
        try:
            self.handler.connection.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Connection already closed while aborting: {e}")


class AuthMixin:
    """
    Cookie based access gate for BaseHTTPRequestHandler.

    The login page, logout and bundled static assets stay reachable so the
    login form can render.
    """

    def isPublicPath(self, path):
        return path in (LOGIN_PATH, LOGOUT_PATH) or path.startswith(STATIC_PREFIX)

    def handleAuthentication(self, request, writer):
        """
        Returns:
            bool: True when the request may proceed, False when a response was already sent.
        """
        authorizer = self.server.authorizer
        if not authorizer.enabled or self.isPublicPath(request.path):
            return True

        if authorizer.authorize(self.headers):
            return True

        logger.info(f"Unauthorized {request.method} {self.path} from {self.client_address[0]}")

        if 'application/json' in (request.header('Accept') or ''):
            self.server.streamer.sendError(UnauthorizedError(), request, writer)
        else:
            self.sendRedirect(writer, f"{LOGIN_PATH}?redirect={quote(self.path, safe='')}")
        return False

    def sendRedirect(self, writer, location, cookie=None):
        headers = {'Location': location, 'Content-Length': '0', 'Cache-Control': 'no-cache'}
        if cookie:
            headers['Set-Cookie'] = cookie
        writer.sendHead(HTTPStatus.FOUND, headers)

    def sendLoginPage(self, request, writer, redirect, error=None):
        body = self.server.renderer.renderLogin(redirect, error).encode('utf-8')
        status = HTTPStatus.UNAUTHORIZED if error else HTTPStatus.OK

        writer.sendHead(status, {
            'Content-Type': 'text/html; charset=utf-8',
            'Content-Length': str(len(body)),
            'Cache-Control': 'no-cache',
        })
        if not request.isHead:
            writer.write(body)

    def handleLoginPage(self, request, writer):
        redirect = safeRedirect(request.queryValue('redirect'))
        if self.server.authorizer.authorize(self.headers):
            self.sendRedirect(writer, redirect)
            return
        self.sendLoginPage(request, writer, redirect)

    def readForm(self):
        try:
            length = int(self.headers.get('Content-Length', '0'))
        except ValueError:
            length = 0

        if length > MAX_FORM_SIZE:
            # Body is left unread, the connection cannot be reused
            self.close_connection = True
            return {}

        body = self.rfile.read(length) if length > 0 else b''
        return parse_qs(body.decode('utf-8', errors='replace'))

    def discardBody(self):
        """Drop an unused request body and close the connection afterwards."""
        self.close_connection = True
        try:
            length = int(self.headers.get('Content-Length', '0'))
        except ValueError:
            return

        # Closing with unread bytes resets the socket, which can eat the response
        if 0 < length <= MAX_FORM_SIZE:
            self.rfile.read(length)

    def handleLogin(self, request, writer):
        authorizer = self.server.authorizer
        form = self.readForm()
        code = form.get('code', [''])[0]
        redirect = safeRedirect(form.get('redirect', ['/'])[0])

        if authorizer.checkCode(code):
            logger.info(f"Login succeeded from {self.client_address[0]}")
            self.sendRedirect(writer, redirect, authorizer.makeCookie())
        else:
            logger.warning(f"Login failed from {self.client_address[0]}")
            self.sendLoginPage(request, writer, redirect, error='Invalid access code')

    def handleLogout(self, request, writer):
        self.sendRedirect(writer, LOGIN_PATH, self.server.authorizer.clearCookie())


class RequestHandler(AuthMixin, BaseHTTPRequestHandler):

    # Keep-alive for responses with a known length
    protocol_version = 'HTTP/1.1'
    server_version = f'nhttp-server/{PUBLIC_VERSION}'
    sys_version = ''

    def do_GET(self):
        self.dispatch()

    def do_HEAD(self):
        self.dispatch()

    def do_OPTIONS(self):
        self.dispatch()

    # Everything else ends in 405 unless it is the login form
    def do_POST(self):
        self.dispatch()

    do_PUT = do_POST
    do_DELETE = do_POST
    do_PATCH = do_POST
    do_TRACE = do_POST
    do_CONNECT = do_POST

    def dispatch(self):
        startTime = time()
        request = ServeRequest.fromTarget(self.command, self.path, self.headers)
        writer = HTTPResponseWriter(self, self.server.corsHeaders())

        with self.server.trackRequest():
            try:
                self.route(request, writer)
            except CLIENT_DISCONNECTS as e:
                logger.debug(f"Client disconnected during {request.method} {self.path}: {e}")
                writer.abort()
            except Exception as e:
                self.server.streamer.handleError(e, request, writer)
            finally:
                self.logAccess(request, writer, time() - startTime)

    def route(self, request, writer):
        method = request.method
        authorizer = self.server.authorizer

        if method == 'OPTIONS':
            writer.sendHead(HTTPStatus.OK, {'Content-Length': '0', 'Allow': ALLOWED_METHODS})
            return

        if authorizer.enabled and request.path == LOGIN_PATH:
            if method == 'POST':
                self.handleLogin(request, writer)
                return
            if method in ('GET', 'HEAD'):
                self.handleLoginPage(request, writer)
                return

        if authorizer.enabled and request.path == LOGOUT_PATH and method in ('GET', 'HEAD'):
            self.handleLogout(request, writer)
            return

        isUpload = method == 'POST' and request.path == UPLOAD_PATH
        if method not in ('GET', 'HEAD') and not isUpload:
            # The request body is never used
            self.discardBody()

        if not self.handleAuthentication(request, writer):
            if isUpload:
                self.discardBody()
            return

        if isUpload:
            self.handleUpload(request, writer)
            return

        if request.path.startswith(STATIC_PREFIX):
            self.server.staticStreamer.serve(request.withPath(request.path[len(STATIC_PREFIX) - 1:]), writer)
        else:
            self.server.streamer.serve(request, writer)

    def sendJSON(self, writer, status, payload):
        body = json.dumps(payload, ensure_ascii=False).encode('utf-8')
        writer.sendHead(status, {
            'Content-Type': 'application/json; charset=utf-8',
            'Content-Length': str(len(body)),
            'Cache-Control': 'no-cache',
        })
        writer.write(body)

    def handleUpload(self, request, writer):
        # Uploading is only offered behind an access code
        if not self.server.authorizer.enabled:
            self.discardBody()
            self.sendJSON(writer, HTTPStatus.FORBIDDEN, {
                'success': False,
                'error': 'Uploads are only available when an access code is set',
            })
            return

        try:
            stored = self.server.uploader.receive(
                self.headers.get('Content-Type'), self.headers.get('Content-Length'), self.rfile
            )
        except CLIENT_DISCONNECTS:
            raise
        except Exception as e:
            # Whatever is left of the body is unread
            self.close_connection = True
            errorHandler = self.server.streamer.errorHandler
            serveError = errorHandler.toServeError(e)
            errorHandler.logError(e, request.method, request.path, serveError.statusCode)
            self.sendJSON(writer, serveError.statusCode, {'success': False, 'error': serveError.message})
            return

        self.sendJSON(writer, HTTPStatus.OK, {
            'success': True,
            'message': f'Uploaded {len(stored)} files',
            'files': [asdict(uploaded) for uploaded in stored],
        })

    def logAccess(self, request, writer, duration):
        userAgent = self.headers.get('User-Agent', '')
        if BOT_PATTERN.search(userAgent) and not self.server.settings.devMode:
            return

        status = int(writer.status) if writer.status else '-'
        if writer.aborted:
            status = f'{status} (aborted)'

        logger.info(f"{request.method} {self.path} {status} {duration * 1000:.0f}ms {formatSize(writer.bytesSent)}")

    def log_message(self, format, *args):
        # http.server's own stderr logging is replaced by logAccess()
        logger.debug(f"{self.address_string()} - {format % args}")


class Server(ThreadingHTTPServer):

    request_queue_size = 64
    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False

    def __init__(self, serverAddress, settings=None, requestHandlerClass=None, authorizer=None, renderer=None):
        self.settings = settings or SettingsGetter.getInstance()
        self.renderer = renderer or Renderer(self.settings.staticRoot, self.settings.devMode)
        self.streamer = ContentStreamer(self.settings, self.renderer)
        self.staticStreamer = ContentStreamer(
            self.settings,
            self.renderer,
            root=self.settings.staticRoot,
            maxAge=STATIC_CACHE_MAX_AGE,
            listDirectories=False,
        )
        self.authorizer = authorizer or createAuthorizer(self.settings)
        self.uploader = UploadReceiver(self.streamer.resolver, self.settings.chunkSize)

        self.serving = False
        self._connections = set()
        self._activeRequests = 0
        self._condition = threading.Condition()

        if ':' in serverAddress[0]:
            self.address_family = socket.AF_INET6

        if requestHandlerClass is None:
            requestHandlerClass = RequestHandler

        super().__init__(serverAddress, requestHandlerClass)

    @property
    def port(self):
        return self.server_address[1]

    def corsHeaders(self):
        if not self.settings.cors:
            return {}
        return {
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': ALLOWED_METHODS,
            'Access-Control-Allow-Headers': 'Range',
        }

    @contextlib.contextmanager
    def trackRequest(self):
        with self._condition:
            self._activeRequests += 1
        try:
            yield
        finally:
            with self._condition:
                self._activeRequests -= 1
                self._condition.notify_all()

    def process_request(self, request, client_address):
        with self._condition:
            self._connections.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        with self._condition:
            self._connections.discard(request)
        super().shutdown_request(request)

    def serve_forever(self, pollInterval=0.5):
        self.serving = True
        try:
            super().serve_forever(pollInterval)
        finally:
            self.serving = False

    def handle_error(self, request, client_address):
        error = sys.exception()
        if isinstance(error, CLIENT_DISCONNECTS):
            logger.debug(f"Connection from {client_address[0]} dropped: {error}")
            return
        logger.exception(f"Unhandled error while serving {client_address[0]}")

    def shutdownGracefully(self, gracePeriod=None):
        """
        Stop accepting connections, let in-flight requests finish for up to
        gracePeriod seconds, then force-close whatever is still open.

        Returns:
            int: number of requests that were still running when the grace period ended.
        """
        if gracePeriod is None:
            gracePeriod = self.settings.shutdownGracePeriod

        if self.serving:
            self.shutdown()
        self.server_close()

        deadline = time() + gracePeriod
        with self._condition:
            while self._activeRequests:
                remaining = deadline - time()
                if remaining <= 0:
                    break
                self._condition.wait(remaining)

            pending = self._activeRequests
            connections = list(self._connections)

        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Connection already closed during shutdown: {e}")

        if pending:
            logger.warning(f"Grace period over, interrupted {pending} in-flight requests")
        logger.info(f"Server stopped, closed {len(connections)} open connections")
        return pending


def createServer(port=None, host=None, settings=None, handlerClass=None, authorizer=None):
    # Factory function to create a Server bound to the configured address
    settings = settings or SettingsGetter.getInstance()

    serverAddress = (settings.host if host is None else host, settings.port if port is None else port)
    return Server(serverAddress, settings, handlerClass, authorizer)

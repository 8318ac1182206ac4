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
Error taxonomy for the request pipeline and the ErrorHandler that turns
errors into status pages.

Lower level components (Paths, Cache, Ranges) return typed outcomes; the
streamer converts them into these exceptions or maps raw OSErrors through
ErrorHandler.fromOSError().
"""

import errno
import html
import json
import datetime
import traceback

from http import HTTPStatus

from nhttp.Kernel import getLogger

logger = getLogger(__name__)


class ServeError(Exception):
    """Base class for failures that map to one HTTP status."""

    statusCode = HTTPStatus.INTERNAL_SERVER_ERROR
    defaultMessage = 'Internal server error'

    def __init__(self, message=None, statusCode=None):
        super().__init__(message or self.defaultMessage)
        if statusCode is not None:
            self.statusCode = HTTPStatus(statusCode)

    @property
    def message(self):
        return str(self)


class BadRequestError(ServeError):
    statusCode = HTTPStatus.BAD_REQUEST
    defaultMessage = 'Malformed request'


class PayloadTooLargeError(ServeError):
    statusCode = HTTPStatus.REQUEST_ENTITY_TOO_LARGE
    defaultMessage = 'Upload exceeds the size limit'


class ForbiddenError(ServeError):
    """Traversal attempt or any request the server refuses on its own."""
    statusCode = HTTPStatus.FORBIDDEN
    defaultMessage = 'Access to this resource is forbidden'


class UnauthorizedError(ServeError):
    """No valid session cookie while an access code is configured."""
    statusCode = HTTPStatus.UNAUTHORIZED
    defaultMessage = 'Authentication required to access this resource'


class NotFoundError(ServeError):
    statusCode = HTTPStatus.NOT_FOUND
    defaultMessage = 'File or directory does not exist'


class PermissionDeniedError(ServeError):
    """The operating system refused access (EACCES / EPERM)."""
    statusCode = HTTPStatus.FORBIDDEN
    defaultMessage = 'No permission to access this resource'


class UnsatisfiableRangeError(ServeError):
    statusCode = HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE
    defaultMessage = 'Requested range not satisfiable'

    def __init__(self, size, message=None):
        super().__init__(message)
        self.size = size


class MethodNotAllowedError(ServeError):
    statusCode = HTTPStatus.METHOD_NOT_ALLOWED
    defaultMessage = 'Method not allowed'


class InternalStreamingError(ServeError):
    """Unexpected I/O, template or archive failure."""
    statusCode = HTTPStatus.INTERNAL_SERVER_ERROR
    defaultMessage = 'Internal server error'


NOT_FOUND_ERRNOS = (errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG)
PERMISSION_ERRNOS = (errno.EACCES, errno.EPERM)

ERROR_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{code} - {title}</title>
    <link rel="stylesheet" href="/static/styles.css">
</head>
<body class="error-page">
    <div class="error-container">
        <h1 class="error-code">{code}</h1>
        <h2 class="error-title">{title}</h2>
        <p class="error-message">{message}</p>
        {details}
        <div class="action-buttons">
            <a class="btn btn-primary" href="javascript:history.back()">Back</a>
            <a class="btn" href="/">Home</a>
        </div>
    </div>
</body>
</html>
"""


class ErrorHandler:
    """
    Maps exceptions to a status code and renders the response body.

    The body is JSON when the client's Accept header includes
    application/json, HTML otherwise. Stack traces are only included when
    showStackTrace is set (development mode).
    """

    def __init__(self, showStackTrace=False):
        self.showStackTrace = showStackTrace

    @staticmethod
    def fromOSError(error):
        """Translate an OSError raised by stat/open/scandir into a ServeError."""
        if isinstance(error, ServeError):
            return error

        if error.errno in NOT_FOUND_ERRNOS:
            serveError = NotFoundError()
        elif error.errno in PERMISSION_ERRNOS:
            serveError = PermissionDeniedError()
        else:
            serveError = InternalStreamingError()

        serveError.__cause__ = error
        return serveError

    def toServeError(self, error):
        if isinstance(error, ServeError):
            return error
        if isinstance(error, OSError):
            return self.fromOSError(error)

        serveError = InternalStreamingError()
        serveError.__cause__ = error
        return serveError

    def getStatusCode(self, error):
        return self.toServeError(error).statusCode

    def render(self, error, accept=None):
        """
        Render an error page.

        Returns:
            tuple: (statusCode, contentType, body bytes)
        """
        serveError = self.toServeError(error)
        statusCode = HTTPStatus(serveError.statusCode)
        message = serveError.message

        original = serveError.__cause__ or serveError
        stack = None
        if self.showStackTrace:
            stack = ''.join(traceback.format_exception(type(original), original, original.__traceback__))

        if accept and 'application/json' in accept:
            payload = {
                'error': {
                    'code': statusCode.value,
                    'message': message,
                    'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
                }
            }
            if stack:
                payload['error']['stack'] = stack
            body = json.dumps(payload, indent=2).encode('utf-8')
            return statusCode, 'application/json; charset=utf-8', body

        details = ''
        if stack:
            details = f'<pre class="error-details">{html.escape(stack)}</pre>'

        body = ERROR_PAGE.format(
            code=statusCode.value,
            title=html.escape(statusCode.phrase),
            message=html.escape(message),
            details=details,
        ).encode('utf-8')
        return statusCode, 'text/html; charset=utf-8', body

    def logError(self, error, method, url, statusCode):
        original = getattr(error, '__cause__', None) or error
        message = f"{method} {url} -> {int(statusCode)}: {original}"

        if int(statusCode) >= 500:
            if self.showStackTrace:
                logger.error(message, exc_info=(type(original), original, original.__traceback__))
            else:
                logger.error(message)
        else:
            logger.info(message)

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
Authorization predicates consulted before a request reaches the streamer.

Both authorizers answer authorize(headers) -> bool; the router decides what
an unauthorized client sees (login redirect or 401).
"""

import hmac
import time
import secrets
import hashlib

from http.cookies import SimpleCookie, CookieError

from nhttp.Kernel import getLogger
from nhttp.Settings import AUTH_COOKIE_NAME, AUTH_COOKIE_MAX_AGE

logger = getLogger(__name__)


class AllowAllAuthorizer:
    """Used when no access code is configured."""

    enabled = False

    def authorize(self, headers):
        return True


class CookieAuthorizer:
    """
    Shared access codes exchanged once for a signed cookie.

    The cookie value is '<expiry>.<hmac>'; the HMAC key mixes the secret with
    the configured codes, so changing codes or restarting without a fixed
    secret logs everyone out.
    """

    enabled = True

    def __init__(self, codes, secret=None, cookieName=AUTH_COOKIE_NAME, maxAge=AUTH_COOKIE_MAX_AGE):
        if not codes:
            raise ValueError('CookieAuthorizer requires at least one access code')

        self.codes = tuple(codes)
        self.cookieName = cookieName
        self.maxAge = maxAge

        secret = secret or secrets.token_hex(32)
        self._key = hashlib.sha256('\0'.join((secret,) + self.codes).encode('utf-8')).digest()

    def checkCode(self, code):
        if not code:
            return False

        # Compare against every code so timing does not reveal which one matched
        matched = False
        for candidate in self.codes:
            if hmac.compare_digest(candidate.encode('utf-8'), code.encode('utf-8')):
                matched = True
        return matched

    def _sign(self, expires):
        return hmac.new(self._key, str(expires).encode('ascii'), hashlib.sha256).hexdigest()

    def issueToken(self, now=None):
        expires = int((now if now is not None else time.time()) + self.maxAge)
        return f'{expires}.{self._sign(expires)}'

    def verifyToken(self, token, now=None):
        if not token:
            return False

        expiresText, _, signature = token.partition('.')
        if not expiresText.isdigit() or not signature:
            return False

        if not hmac.compare_digest(self._sign(int(expiresText)), signature):
            logger.debug('Rejected auth cookie with bad signature')
            return False

        return int(expiresText) > (now if now is not None else time.time())

    def getToken(self, headers):
        cookieHeader = (headers.get('Cookie') or headers.get('cookie')) if headers else None
        if not cookieHeader:
            return None

        try:
            cookie = SimpleCookie(cookieHeader)
        except CookieError as e:
            logger.debug(f"Unparseable Cookie header: {e}")
            return None

        morsel = cookie.get(self.cookieName)
        return morsel.value if morsel else None

    def authorize(self, headers):
        return self.verifyToken(self.getToken(headers))

    def makeCookie(self):
        """Set-Cookie value for a freshly authenticated client."""
        return f'{self.cookieName}={self.issueToken()}; Max-Age={self.maxAge}; Path=/; HttpOnly; SameSite=Lax'

    def clearCookie(self):
        return f'{self.cookieName}=; Max-Age=0; Path=/; HttpOnly; SameSite=Lax'


def createAuthorizer(settings):
    if not settings.authEnabled:
        return AllowAllAuthorizer()
    return CookieAuthorizer(settings.authCodes, settings.cookieSecret)

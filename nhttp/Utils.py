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
import sys
import socket
import datetime

import bitmath
import chardet
import psutil

from email.utils import formatdate, parsedate_to_datetime
from urllib.parse import quote

from nhttp.Kernel import getLogger

logger = getLogger(__name__)


def toUnicode(s, encodings=None, throw=True, confidence=0.8):
    """
    Force bytes to a str.

    UTF-8 is always tried first because browsers percent-encode URLs as UTF-8.
    Legacy clients may still send native encodings (GBK, cp950, Shift-JIS), so
    chardet picks the next candidates.

    @param s String.
    @param encodings Extra encodings to try after detection.
    @param throw Raise exception if it fails to convert string.
    @param confidence Minimum chardet confidence before the detected encoding is preferred.
    @return str, or None when nothing decodes and throw is False.
    """
    if isinstance(s, str):
        return s

    if not isinstance(s, (bytes, bytearray)):
        return str(s)

    data = bytes(s)
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        error = e

    candidates = []
    result = chardet.detect(data)
    if result['encoding'] and result['confidence'] > confidence:
        candidates.append(result['encoding'])
    candidates.extend(encodings or ())

    for encoding in candidates:
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            error = e

    if throw and error:
        raise error

    return None


# flush is required when stdout is redirected to a pipe or a service log.
def flushPrint(text):
    try:
        print(text, flush=True)
    except UnicodeEncodeError as e:
        # Fallback for terminals that don't support certain characters (e.g., emojis on Windows cp950)
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {sys.stdout.encoding=}")

        buf = getattr(sys.stdout, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
        else:
            print(text.encode(sys.stdout.encoding, errors='replace').decode(sys.stdout.encoding), flush=True)


def formatSize(size, decimal=1):
    """
    Human readable size with binary prefixes, e.g. 0 B, 512 B, 1.5 KB, 2 MB.
    Trailing zeros are dropped so whole values stay short.
    """
    if not size or size <= 0:
        return '0 B'

    best = bitmath.Byte(size).best_prefix(system=bitmath.NIST)
    value = f'{best.value:.{decimal}f}'
    if '.' in value:
        value = value.rstrip('0').rstrip('.')

    unit = 'B' if best.unit == 'Byte' else best.unit.replace('iB', 'B')
    return f'{value} {unit}'


def formatDate(timestamp):
    """Format a POSIX timestamp as local 'YYYY-MM-DD HH:MM'."""
    try:
        return datetime.datetime.fromtimestamp(timestamp).strftime('%Y-%m-%d %H:%M')
    except (TypeError, ValueError, OverflowError, OSError):
        return 'Unknown date'


def httpDate(timestamp):
    """RFC 7231 IMF-fixdate, e.g. 'Wed, 15 Jun 2024 10:00:00 GMT'."""
    return formatdate(timestamp, usegmt=True)


def parseHttpDate(value):
    """
    Parse an HTTP-date header value into a POSIX timestamp.

    Returns None for missing or malformed values, which callers treat as
    "no condition".
    """
    if not value:
        return None

    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError) as e:
        logger.debug(f"Ignoring malformed HTTP date '{value}': {e}")
        return None

    if parsed is None:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)

    return parsed.timestamp()


def percentEncode(text):
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(text, safe="!~*'()")


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default


def getLocalIPs():
    """
    IPv4 addresses of all non-loopback interfaces, for the startup banner.
    """
    ips = []
    try:
        for name, addresses in psutil.net_if_addrs().items():
            for address in addresses:
                if address.family == socket.AF_INET and not address.address.startswith('127.'):
                    ips.append(address.address)
    except (OSError, psutil.Error) as e:
        logger.debug(f"Unable to enumerate network interfaces: {e}")

    return ips

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
import enum

from dataclasses import dataclass
from typing import Optional

from nhttp.Kernel import getLogger

logger = getLogger(__name__)

RANGE_SPEC = re.compile(r'^(\d*)-(\d*)$')


class RangeKind(enum.Enum):
    NO_RANGE = 'none'
    SATISFIABLE = 'satisfiable'
    UNSATISFIABLE = 'unsatisfiable'


@dataclass(frozen=True)
class RangeOutcome:
    kind: RangeKind
    size: int
    start: Optional[int] = None
    end: Optional[int] = None # Inclusive

    @property
    def length(self):
        if self.kind is not RangeKind.SATISFIABLE:
            return None
        return self.end - self.start + 1

    @property
    def contentRange(self):
        if self.kind is RangeKind.SATISFIABLE:
            return f'bytes {self.start}-{self.end}/{self.size}'
        if self.kind is RangeKind.UNSATISFIABLE:
            return f'bytes */{self.size}'
        return None


def negotiateRange(header, size):
    """
    Parse a Range header against a file of the given size.

    Only the first range of a multi-range request is honored. Syntax errors
    and non-byte units are ignored so the full body is sent; ranges that fall
    outside the file are unsatisfiable and never clamped.
    """
    if not header:
        return RangeOutcome(RangeKind.NO_RANGE, size)

    unit, sep, ranges = header.strip().partition('=')
    if not sep or unit.strip().lower() != 'bytes':
        logger.debug(f"Ignoring Range header with unsupported unit: {header!r}")
        return RangeOutcome(RangeKind.NO_RANGE, size)

    first = ranges.split(',', 1)[0].strip()
    match = RANGE_SPEC.match(first)
    if not match or (not match.group(1) and not match.group(2)):
        logger.debug(f"Ignoring malformed Range header: {header!r}")
        return RangeOutcome(RangeKind.NO_RANGE, size)

    startText, endText = match.groups()

    # Suffix form: last N bytes
    if not startText:
        suffix = int(endText)
        if suffix == 0 or size == 0:
            return RangeOutcome(RangeKind.UNSATISFIABLE, size)
        start = max(0, size - suffix)
        return RangeOutcome(RangeKind.SATISFIABLE, size, start, size - 1)

    start = int(startText)
    end = int(endText) if endText else size - 1

    if start >= size or end >= size or start > end:
        return RangeOutcome(RangeKind.UNSATISFIABLE, size)

    return RangeOutcome(RangeKind.SATISFIABLE, size, start, end)

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
import re
import html
import posixpath
import threading

from urllib.parse import quote

from nhttp.Kernel import getLogger
from nhttp.Listing import summarize
from nhttp.Settings import DEFAULT_STATIC_ROOT
from nhttp.Utils import formatSize, formatDate

PLACEHOLDER = re.compile(r'\{\{ (\w+) \}\}')

logger = getLogger(__name__)

ROOT_TITLE = 'Home'

ICONS = {
    'image': '🖼️',
    'video': '🎬',
    'audio': '🎵',
    'document': '📄',
    'spreadsheet': '📊',
    'code': '📜',
    'archive': '📦',
    'executable': '⚙️',
}

ICON_EXTENSIONS = {
    'image': ('.png', '.jpg', '.jpeg', '.gif', '.svg', '.webp', '.bmp', '.ico'),
    'video': ('.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm', '.mkv'),
    'audio': ('.mp3', '.wav', '.flac', '.aac', '.ogg', '.wma'),
    'document': ('.pdf', '.doc', '.docx', '.txt', '.rtf', '.odt', '.md'),
    'spreadsheet': ('.xls', '.xlsx', '.csv', '.ods', '.ppt', '.pptx', '.odp'),
    'code': ('.js', '.ts', '.html', '.css', '.json', '.xml', '.py', '.java', '.cpp', '.c',
             '.php', '.rb', '.go', '.rs', '.swift', '.kt', '.sh'),
    'archive': ('.zip', '.rar', '.7z', '.tar', '.gz', '.bz2', '.xz'),
    'executable': ('.exe', '.msi', '.deb', '.rpm', '.dmg', '.pkg', '.app'),
}

EXTENSION_KINDS = {ext: kind for kind, exts in ICON_EXTENSIONS.items() for ext in exts}

# Media kinds the browser can preview inline
PREVIEW_KINDS = ('image', 'video', 'audio')


def getFileKind(ext, isDir=False):
    if isDir:
        return 'folder'
    return EXTENSION_KINDS.get(ext.lower(), 'file')


def getIcon(ext, isDir=False):
    if isDir:
        return '📁'
    return ICONS.get(getFileKind(ext), '📄')


def hrefFor(urlPath, name, isDir=False):
    href = quote(posixpath.join(urlPath, name))
    return href + '/' if isDir else href


def renderBreadcrumb(urlPath):
    crumbs = [f'<a href="/">{ROOT_TITLE}</a>']
    parts = [part for part in urlPath.split('/') if part]
    current = ''

    for index, part in enumerate(parts):
        current += '/' + part
        label = html.escape(part)
        if index == len(parts) - 1:
            crumbs.append(f'<span class="current">{label}</span>')
        else:
            crumbs.append(f'<a href="{quote(current)}/">{label}</a>')

    return ' / '.join(crumbs)


def renderUploadForm(urlPath):
    # Works as a plain form post; app.js upgrades it to fetch() and reloads the listing
    return (
        '<form id="uploadForm" class="upload-form" action="/upload" method="post" enctype="multipart/form-data">'
        f'<input type="hidden" name="uploadPath" value="{html.escape(urlPath or "/", quote=True)}">'
        '<label class="btn" title="Upload files to this folder">⬆️ Upload'
        '<input id="uploadInput" type="file" name="files" multiple hidden></label>'
        '</form>'
    )


class Renderer:
    """
    Fills the bundled HTML templates.

    Templates use '{{ name }}' placeholders. They are read once and cached,
    except in development mode where every render reloads them from disk.
    """

    def __init__(self, templateRoot=DEFAULT_STATIC_ROOT, devMode=False):
        self.templateRoot = templateRoot
        self.devMode = devMode
        self._cache = {}
        self._lock = threading.Lock()

    def loadTemplate(self, name):
        if not self.devMode:
            with self._lock:
                if name in self._cache:
                    return self._cache[name]

        path = os.path.join(self.templateRoot, name)
        with open(path, 'r', encoding='utf-8') as f:
            template = f.read()

        if not self.devMode:
            with self._lock:
                self._cache[name] = template
        return template

    @staticmethod
    def fill(template, values):
        # One pass, so placeholder text inside values (file names) stays literal
        return PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)

    def renderRow(self, urlPath, entry):
        kind = getFileKind(entry.ext, entry.isDir)
        name = html.escape(entry.name)
        href = hrefFor(urlPath, entry.name, entry.isDir)
        size = '-' if entry.isDir else formatSize(entry.size)

        if entry.isDir:
            actions = f'<a class="btn btn-small" href="{href}?download=1" title="Download as zip">⬇️</a>'
        else:
            actions = f'<a class="btn btn-small" href="{href}?download=1" download title="Download">⬇️</a>'
            if kind in PREVIEW_KINDS:
                actions = (f'<button class="btn btn-small preview-btn" data-src="{href}" data-kind="{kind}" '
                           f'title="Preview">👁️</button>') + actions

        return (
            f'<tr class="file-item" data-kind="{kind}" data-name="{name}">'
            f'<td class="file-name"><span class="file-icon">{getIcon(entry.ext, entry.isDir)}</span>'
            f'<a href="{href}">{name}{"/" if entry.isDir else ""}</a></td>'
            f'<td class="file-size" data-size="{entry.size}">{size}</td>'
            f'<td class="file-date" data-mtime="{int(entry.mtime)}">{formatDate(entry.mtime)}</td>'
            f'<td class="file-actions">{actions}</td>'
            '</tr>'
        )

    def render(self, urlPath, entries, authEnabled=False):
        """Render a directory listing page. Entries are expected in display order."""
        isRoot = urlPath in ('', '/')
        title = ROOT_TITLE if isRoot else urlPath

        parentRow = ''
        if not isRoot:
            parent = posixpath.dirname(urlPath.rstrip('/')) or '/'
            parentHref = quote(parent if parent.endswith('/') else parent + '/')
            parentRow = (
                '<tr class="file-item parent"><td class="file-name"><span class="file-icon">⬆️</span>'
                f'<a href="{parentHref}">..</a></td><td></td><td></td><td></td></tr>'
            )

        rows = ''.join(self.renderRow(urlPath, entry) for entry in entries)
        if not entries:
            rows = '<tr class="empty"><td colspan="4">This folder is empty</td></tr>'

        summary = summarize(entries)
        logout = '<a class="btn" href="/logout">Log out</a>' if authEnabled else ''
        upload = renderUploadForm(urlPath) if authEnabled else ''
        downloadHref = quote(urlPath if urlPath.endswith('/') else urlPath + '/')

        return self.fill(self.loadTemplate('directory.html'), {
            'title': html.escape(title),
            'breadcrumb': renderBreadcrumb(urlPath),
            'rows': parentRow + rows,
            'dirCount': str(summary['dirCount']),
            'fileCount': str(summary['fileCount']),
            'totalSize': formatSize(summary['totalSize']),
            'downloadHref': f'{downloadHref}?download=1',
            'upload': upload,
            'logout': logout,
        })

    def renderLogin(self, redirect='/', error=None):
        message = f'<p class="login-error">{html.escape(error)}</p>' if error else ''
        return self.fill(self.loadTemplate('login.html'), {
            'redirect': html.escape(redirect, quote=True),
            'error': message,
        })

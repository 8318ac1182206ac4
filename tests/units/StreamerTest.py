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

import io
import os
import gzip
import json
import zlib
import zipfile
import unittest

from http import HTTPStatus

from nhttp.Renderer import Renderer
from nhttp.Settings import DEFAULT_STATIC_ROOT, STATIC_CACHE_MAX_AGE
from nhttp.Streamer import (
    ContentStreamer, ServeRequest, chooseEncoding, contentDisposition, guessContentType, isCompressible,
)

from ServerTestBase import FakeResponseWriter, FileTreeTestCase, makeSettings

TEXT = b'hello world\n' * 200
BINARY = bytes(range(256)) * 4 # 1024 bytes


class TestHelpers(unittest.TestCase):

    def testGuessContentType(self):
        testCases = [
            ('a.txt', 'text/plain; charset=utf-8'),
            ('a.html', 'text/html; charset=utf-8'),
            ('a.json', 'application/json; charset=utf-8'),
            ('a.md', 'text/markdown; charset=utf-8'),
            ('a.png', 'image/png'),
            ('a.tar.gz', 'application/gzip'),
            ('a.unknownext', 'application/octet-stream'),
            ('noext', 'application/octet-stream'),
        ]
        for name, expected in testCases:
            with self.subTest(name=name):
                self.assertEqual(guessContentType(name), expected)

    def testIsCompressible(self):
        self.assertTrue(isCompressible('text/html; charset=utf-8'))
        self.assertTrue(isCompressible('image/svg+xml'))
        self.assertFalse(isCompressible('image/png'))
        self.assertFalse(isCompressible('application/octet-stream'))

    def testChooseEncoding(self):
        testCases = [
            (None, None),
            ('', None),
            ('gzip', 'gzip'),
            ('deflate, gzip', 'gzip'),
            ('deflate', 'deflate'),
            ('gzip;q=0, deflate', 'deflate'),
            ('gzip; q=0.0, deflate;q=0', None),
            ('br', None),
            ('*', 'gzip'),
            ('*, gzip;q=0', 'deflate'),
        ]
        for header, expected in testCases:
            with self.subTest(header=header):
                self.assertEqual(chooseEncoding(header), expected)

    def testContentDisposition(self):
        self.assertEqual(
            contentDisposition('報告 1.pdf'),
            "attachment; filename=\"%E5%A0%B1%E5%91%8A%201.pdf\"; filename*=UTF-8''%E5%A0%B1%E5%91%8A%201.pdf",
        )

    def testServeRequest(self):
        request = ServeRequest.fromTarget('get', '/a%20b.txt?download=1&x=2', {'Range': 'bytes=0-1'})
        self.assertEqual(request.method, 'GET')
        self.assertEqual(request.path, '/a%20b.txt')
        self.assertTrue(request.wantsDownload)
        self.assertEqual(request.queryValue('x'), '2')
        self.assertEqual(request.header('range'), 'bytes=0-1')
        self.assertEqual(request.withPath('/b').header('RANGE'), 'bytes=0-1')
        self.assertFalse(ServeRequest.fromTarget('HEAD', '/?download=0').wantsDownload)


class StreamerTestCase(FileTreeTestCase):

    settingsKwargs = {}

    def setUp(self):
        super().setUp()
        self.createFile('hello.txt', TEXT)
        self.createFile('data.bin', BINARY)
        self.createFile('a.txt', b'a')
        self.createFile('b.txt', b'b')
        self.createDir('A')
        self.createFile('docs/readme.md', b'# docs')
        self.createFile('site/index.html', b'<h1>site</h1>')

        self.settings = makeSettings(self.rootDir, **self.settingsKwargs)
        self.streamer = ContentStreamer(self.settings, Renderer())

    def serve(self, target, method='GET', headers=None, writer=None):
        writer = writer or FakeResponseWriter()
        self.streamer.serve(ServeRequest.fromTarget(method, target, headers or {}), writer)
        return writer


class TestFileBranch(StreamerTestCase):

    def testFullFile(self):
        writer = self.serve('/hello.txt')

        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertEqual(writer.body, TEXT)
        self.assertEqual(writer.headers['Content-Length'], str(len(TEXT)))
        self.assertEqual(writer.headers['Content-Type'], 'text/plain; charset=utf-8')
        self.assertEqual(writer.headers['Accept-Ranges'], 'bytes')
        self.assertEqual(writer.headers['Cache-Control'], 'public, max-age=3600')
        self.assertTrue(writer.headers['ETag'].startswith(f'"{len(TEXT)}-'))
        self.assertIn('Last-Modified', writer.headers)
        self.assertNotIn('Content-Disposition', writer.headers)

    def testHeadHasHeadersButNoBody(self):
        writer = self.serve('/hello.txt', method='HEAD')
        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertEqual(writer.headers['Content-Length'], str(len(TEXT)))
        self.assertEqual(writer.body, b'')

    def testDownloadDisposition(self):
        writer = self.serve('/hello.txt?download=1')
        self.assertEqual(
            writer.headers['Content-Disposition'], "attachment; filename=\"hello.txt\"; filename*=UTF-8''hello.txt"
        )

    def testNotModified(self):
        etag = self.serve('/hello.txt').headers['ETag']
        writer = self.serve('/hello.txt', headers={'If-None-Match': etag})

        self.assertEqual(writer.status, HTTPStatus.NOT_MODIFIED)
        self.assertEqual(writer.body, b'')
        self.assertNotIn('Content-Length', writer.headers)
        self.assertEqual(writer.headers['ETag'], etag)

    def testRange(self):
        writer = self.serve('/data.bin', headers={'Range': 'bytes=500-599'})

        self.assertEqual(writer.status, HTTPStatus.PARTIAL_CONTENT)
        self.assertEqual(writer.body, BINARY[500:600])
        self.assertEqual(writer.headers['Content-Range'], f'bytes 500-599/{len(BINARY)}')
        self.assertEqual(writer.headers['Content-Length'], '100')

    def testRangeWithSmallChunks(self):
        self.streamer.chunkSize = 7
        writer = self.serve('/data.bin', headers={'Range': 'bytes=-100'})
        self.assertEqual(writer.body, BINARY[-100:])

    def testUnsatisfiableRange(self):
        writer = self.serve('/data.bin', headers={'Range': 'bytes=2000-'})

        self.assertEqual(writer.status, HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE)
        self.assertEqual(writer.headers['Content-Range'], f'bytes */{len(BINARY)}')
        self.assertEqual(writer.body, b'')

    def testMalformedRangeSendsWholeFile(self):
        writer = self.serve('/data.bin', headers={'Range': 'bytes=oops'})
        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertEqual(writer.body, BINARY)

    def testNonAsciiName(self):
        self.createFile('中文.txt', b'zh')
        writer = self.serve('/%E4%B8%AD%E6%96%87.txt')
        self.assertEqual(writer.body, b'zh')

    @unittest.skipUnless(hasattr(os, 'mkfifo'), 'needs named pipes')
    def testSpecialFileIsNotFound(self):
        os.mkfifo(os.path.join(self.rootDir, 'pipe'))
        self.assertEqual(self.serve('/pipe').status, HTTPStatus.NOT_FOUND)


class TestErrors(StreamerTestCase):

    def testTraversalIsForbidden(self):
        writer = self.serve('/a/../../etc/passwd')
        self.assertEqual(writer.status, HTTPStatus.FORBIDDEN)
        self.assertEqual(writer.headers['Content-Type'], 'text/html; charset=utf-8')

    def testMissingFile(self):
        writer = self.serve('/missing.txt')
        self.assertEqual(writer.status, HTTPStatus.NOT_FOUND)
        self.assertIn(b'404', writer.body)
        self.assertEqual(writer.headers['Content-Length'], str(len(writer.body)))

    def testFileUsedAsDirectory(self):
        self.assertEqual(self.serve('/hello.txt/more').status, HTTPStatus.NOT_FOUND)

    def testJsonErrors(self):
        writer = self.serve('/missing.txt', headers={'Accept': 'application/json'})
        self.assertEqual(json.loads(writer.body)['error']['code'], 404)

    def testHeadErrorHasNoBody(self):
        writer = self.serve('/missing.txt', method='HEAD')
        self.assertEqual(writer.status, HTTPStatus.NOT_FOUND)
        self.assertEqual(writer.body, b'')

    def testOtherMethodsAreNotAllowed(self):
        writer = self.serve('/hello.txt', method='DELETE')
        self.assertEqual(writer.status, HTTPStatus.METHOD_NOT_ALLOWED)
        self.assertEqual(writer.headers['Allow'], 'GET, HEAD, OPTIONS')

    def testClientDisconnectAbortsQuietly(self):
        writer = FakeResponseWriter(failOnWrite=BrokenPipeError())
        self.assertEqual(self.serve('/hello.txt', writer=writer).status, HTTPStatus.OK)
        self.assertTrue(writer.aborted)

    def testFailureAfterHeadersAbortsConnection(self):
        writer = FakeResponseWriter(failOnWrite=OSError(5, 'I/O error'))
        with self.assertLogs('nhttp.Streamer', level='ERROR'):
            self.serve('/hello.txt', writer=writer)

        self.assertTrue(writer.aborted)
        self.assertEqual(writer.status, HTTPStatus.OK)


class TestDirectoryBranch(StreamerTestCase):

    def testListingOrder(self):
        writer = self.serve('/')

        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertEqual(writer.headers['Content-Type'], 'text/html; charset=utf-8')
        self.assertEqual(writer.headers['Content-Length'], str(len(writer.body)))

        page = writer.body.decode('utf-8')
        positions = [page.index(f'href="{href}"') for href in ('/A/', '/a.txt', '/b.txt')]
        self.assertEqual(positions, sorted(positions))

    def testIndexShortCircuit(self):
        writer = self.serve('/site/')
        self.assertEqual(writer.body, b'<h1>site</h1>')
        self.assertEqual(writer.headers['Content-Type'], 'text/html; charset=utf-8')
        self.assertIn('ETag', writer.headers)

    def testDirectoryDownloadIsZip(self):
        writer = self.serve('/docs?download=1')

        self.assertEqual(writer.headers['Content-Type'], 'application/zip')
        with zipfile.ZipFile(io.BytesIO(writer.body)) as zf:
            self.assertEqual(zf.read('docs/readme.md'), b'# docs')

    def testHeadListing(self):
        writer = self.serve('/', method='HEAD')
        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertGreater(int(writer.headers['Content-Length']), 0)
        self.assertEqual(writer.body, b'')


class TestCompression(StreamerTestCase):

    settingsKwargs = {'compress': True}

    def testGzip(self):
        writer = self.serve('/hello.txt', headers={'Accept-Encoding': 'gzip, deflate'})

        self.assertEqual(writer.headers['Content-Encoding'], 'gzip')
        self.assertEqual(writer.headers['Vary'], 'Accept-Encoding')
        self.assertEqual(writer.headers['Connection'], 'close')
        self.assertNotIn('Content-Length', writer.headers)
        self.assertEqual(gzip.decompress(writer.body), TEXT)

    def testDeflateIsZlibFormat(self):
        writer = self.serve('/hello.txt', headers={'Accept-Encoding': 'deflate'})
        self.assertEqual(writer.headers['Content-Encoding'], 'deflate')
        self.assertEqual(zlib.decompress(writer.body), TEXT)

    def testRangeIsNeverCompressed(self):
        writer = self.serve('/hello.txt', headers={'Accept-Encoding': 'gzip', 'Range': 'bytes=0-9'})
        self.assertEqual(writer.status, HTTPStatus.PARTIAL_CONTENT)
        self.assertNotIn('Content-Encoding', writer.headers)
        self.assertEqual(writer.body, TEXT[:10])

    def testIgnoredRangeIsNotCompressed(self):
        for rangeHeader in ('bytes=abc', 'items=0-9'):
            with self.subTest(rangeHeader=rangeHeader):
                writer = self.serve('/hello.txt', headers={'Accept-Encoding': 'gzip', 'Range': rangeHeader})
                self.assertEqual(writer.status, HTTPStatus.OK)
                self.assertNotIn('Content-Encoding', writer.headers)
                self.assertEqual(writer.headers['Content-Length'], str(len(TEXT)))
                self.assertEqual(writer.body, TEXT)

    def testBinaryIsNotCompressed(self):
        writer = self.serve('/data.bin', headers={'Accept-Encoding': 'gzip'})
        self.assertNotIn('Content-Encoding', writer.headers)
        self.assertEqual(writer.body, BINARY)

    def testRefusedEncoding(self):
        writer = self.serve('/hello.txt', headers={'Accept-Encoding': 'gzip;q=0'})
        self.assertNotIn('Content-Encoding', writer.headers)
        self.assertEqual(writer.body, TEXT)

    def testIndexIsNeverCompressed(self):
        writer = self.serve('/site/', headers={'Accept-Encoding': 'gzip'})
        self.assertNotIn('Content-Encoding', writer.headers)
        self.assertEqual(writer.body, b'<h1>site</h1>')

    def testHeadCompressed(self):
        writer = self.serve('/hello.txt', method='HEAD', headers={'Accept-Encoding': 'gzip'})
        self.assertEqual(writer.headers['Content-Encoding'], 'gzip')
        self.assertEqual(writer.body, b'')


class TestStaticStreamer(FileTreeTestCase):

    def setUp(self):
        super().setUp()
        settings = makeSettings(self.rootDir)
        self.streamer = ContentStreamer(
            settings, Renderer(), root=DEFAULT_STATIC_ROOT, maxAge=STATIC_CACHE_MAX_AGE, listDirectories=False
        )

    def testBundledAsset(self):
        writer = FakeResponseWriter()
        self.streamer.serve(ServeRequest.fromTarget('GET', '/styles.css'), writer)

        self.assertEqual(writer.status, HTTPStatus.OK)
        self.assertEqual(writer.headers['Content-Type'], 'text/css; charset=utf-8')
        self.assertEqual(writer.headers['Cache-Control'], 'public, max-age=86400')

    def testNoDirectoryListing(self):
        writer = FakeResponseWriter()
        self.streamer.serve(ServeRequest.fromTarget('GET', '/'), writer)
        self.assertEqual(writer.status, HTTPStatus.NOT_FOUND)


if __name__ == '__main__':
    unittest.main()

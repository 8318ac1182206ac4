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
import unittest

from nhttp.Paths import PathResolver, isWithinRoot, splitUrlPath

from ServerTestBase import FileTreeTestCase


class TestSplitUrlPath(unittest.TestCase):

    def testNormalizesSegments(self):
        testCases = [
            ('/', []),
            ('', []),
            ('/a/b.txt', ['a', 'b.txt']),
            ('//a///b/', ['a', 'b']),
            ('/a/./b', ['a', 'b']),
            ('/a/../b.txt', ['b.txt']),
            ('/a/b/../../c', ['c']),
            ('/a%20b/c%2Bd', ['a b', 'c+d']),
            ('/%E4%B8%AD%E6%96%87.txt', ['中文.txt']),
            ('/a\\b', ['a', 'b']),
        ]
        for rawPath, expected in testCases:
            with self.subTest(rawPath=rawPath):
                self.assertEqual(splitUrlPath(rawPath), expected)

    def testClimbingAboveRootIsRejected(self):
        for rawPath in ('/..', '/../etc/passwd', '/a/../../etc/passwd', '/%2e%2e/secret', '/a\\..\\..\\x'):
            with self.subTest(rawPath=rawPath):
                self.assertIsNone(splitUrlPath(rawPath))

    def testNulByteIsRejected(self):
        self.assertIsNone(splitUrlPath('/a%00.txt'))

    def testQueryAndFragmentAreIgnored(self):
        self.assertEqual(splitUrlPath('/a.txt?download=1'), ['a.txt'])
        self.assertEqual(splitUrlPath('/a.txt#top'), ['a.txt'])


class TestIsWithinRoot(unittest.TestCase):

    def testSegmentWiseContainment(self):
        root = os.path.join(os.sep, 'srv', 'share')
        self.assertTrue(isWithinRoot(root, root))
        self.assertTrue(isWithinRoot(os.path.join(root, 'a'), root))
        self.assertFalse(isWithinRoot(root + '-evil', root))
        self.assertFalse(isWithinRoot(os.path.join(os.sep, 'srv'), root))


class TestPathResolver(FileTreeTestCase):

    def setUp(self):
        super().setUp()
        self.createFile('a/b.txt', b'b')
        self.resolver = PathResolver(self.rootDir)

    def testRootResolvesToRoot(self):
        resolved = self.resolver.resolve('/')
        self.assertEqual(resolved.path, self.rootDir)
        self.assertEqual(resolved.urlPath, '/')
        self.assertTrue(resolved.isRoot)

    def testNestedPath(self):
        resolved = self.resolver.resolve('/a/b.txt')
        self.assertEqual(resolved.path, os.path.join(self.rootDir, 'a', 'b.txt'))
        self.assertEqual(resolved.urlPath, '/a/b.txt')
        self.assertEqual(resolved.name, 'b.txt')
        self.assertFalse(resolved.isRoot)

    def testDotSegmentsStayInsideRoot(self):
        resolved = self.resolver.resolve('/a/../a/b.txt')
        self.assertEqual(resolved.path, os.path.join(self.rootDir, 'a', 'b.txt'))

    def testTraversalIsForbidden(self):
        self.assertIsNone(self.resolver.resolve('/a/../../etc/passwd'))
        self.assertIsNone(self.resolver.resolve('/%2E%2E/%2E%2E/etc/passwd'))

    def testResolvedPathIsImmutable(self):
        resolved = self.resolver.resolve('/a')
        with self.assertRaises(AttributeError):
            resolved.path = '/etc'

    def testMissingFileStillResolves(self):
        # Existence is checked by the caller when it stats the path
        resolved = self.resolver.resolve('/missing.txt')
        self.assertEqual(resolved.path, os.path.join(self.rootDir, 'missing.txt'))

    @unittest.skipIf(sys.platform == 'win32', 'symlinks need extra privileges on Windows')
    def testSymlinkEscapeOnlyRejectedWhenConfined(self):
        outside = self.createDir('../outside-' + os.path.basename(self.rootDir))
        self.addCleanup(os.rmdir, os.path.normpath(outside))
        os.symlink(outside, os.path.join(self.rootDir, 'link'))

        self.assertIsNotNone(self.resolver.resolve('/link'))
        self.assertIsNone(PathResolver(self.rootDir, confineSymlinks=True).resolve('/link'))
        self.assertIsNotNone(PathResolver(self.rootDir, confineSymlinks=True).resolve('/a/b.txt'))


if __name__ == '__main__':
    unittest.main()

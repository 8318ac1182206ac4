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

from nhttp.Listing import DirectoryEntry, entrySortKey, findIndex, listDirectory, summarize

from ServerTestBase import FileTreeTestCase


class TestEntrySortKey(unittest.TestCase):

    def testDirectoriesFirstThenName(self):
        entries = [
            DirectoryEntry('b.txt', False, 1, 0, '.txt'),
            DirectoryEntry('z', True, 0, 0, ''),
            DirectoryEntry('a.txt', False, 1, 0, '.txt'),
            DirectoryEntry('A', True, 0, 0, ''),
        ]
        names = [entry.name for entry in sorted(entries, key=entrySortKey)]
        self.assertEqual(names, ['A', 'z', 'a.txt', 'b.txt'])

    def testCaseInsensitiveWithStableTieBreak(self):
        entries = [
            DirectoryEntry('b.txt', False, 1, 0, '.txt'),
            DirectoryEntry('C.txt', False, 1, 0, '.txt'),
            DirectoryEntry('B.txt', False, 1, 0, '.txt'),
        ]
        names = [entry.name for entry in sorted(entries, key=entrySortKey)]
        self.assertEqual(names, ['B.txt', 'b.txt', 'C.txt'])


class TestListDirectory(FileTreeTestCase):

    def setUp(self):
        super().setUp()
        self.createDir('A')
        self.createFile('a.txt', b'aaa')
        self.createFile('b.txt', b'bbbbb')
        self.createFile('A/inner.txt', b'not listed')

    def testOneLevelSortedWithMetadata(self):
        entries = listDirectory(self.rootDir, maxWorkers=2)

        self.assertEqual([entry.name for entry in entries], ['A', 'a.txt', 'b.txt'])

        directory, first, second = entries
        self.assertTrue(directory.isDir)
        self.assertEqual(directory.size, 0)
        self.assertEqual(directory.ext, '')
        self.assertFalse(first.isDir)
        self.assertEqual(first.size, 3)
        self.assertEqual(first.ext, '.txt')
        self.assertEqual(second.size, 5)
        self.assertGreater(first.mtime, 0)

    def testEmptyDirectory(self):
        self.assertEqual(listDirectory(self.createDir('empty')), [])

    def testMissingDirectoryRaises(self):
        with self.assertRaises(FileNotFoundError):
            listDirectory(os.path.join(self.rootDir, 'missing'))

    @unittest.skipIf(sys.platform == 'win32', 'symlinks need extra privileges on Windows')
    def testBrokenSymlinkIsListedWithDefaults(self):
        os.symlink(os.path.join(self.rootDir, 'gone'), os.path.join(self.rootDir, 'broken'))

        entries = {entry.name: entry for entry in listDirectory(self.rootDir)}
        self.assertIn('broken', entries)
        self.assertFalse(entries['broken'].isDir)
        self.assertEqual(entries['broken'].size, 0)

    def testSummarize(self):
        summary = summarize(listDirectory(self.rootDir))
        self.assertEqual(summary, {'dirCount': 1, 'fileCount': 2, 'totalSize': 8})
        self.assertEqual(summarize([]), {'dirCount': 0, 'fileCount': 0, 'totalSize': 0})


class TestFindIndex(FileTreeTestCase):

    def testIndexFile(self):
        path = self.createFile('site/index.html', '<h1>hi</h1>')
        self.assertEqual(findIndex(os.path.dirname(path)), path)

    def testNoIndex(self):
        self.assertIsNone(findIndex(self.createDir('plain')))

    def testIndexDirectoryIsIgnored(self):
        self.createDir('odd/index.html')
        self.assertIsNone(findIndex(os.path.join(self.rootDir, 'odd')))


if __name__ == '__main__':
    unittest.main()

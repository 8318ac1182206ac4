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
import errno
import signal
import threading
import webbrowser

from nhttp.Kernel import getLogger, PUBLIC_VERSION
from nhttp.CLI import configureCLIParser, configureLogging, loadEnvFile, resolveRootDir, showVersion
from nhttp.Server import createServer
from nhttp.Settings import LISTING_WORKERS, SHUTDOWN_GRACE_PERIOD, TRANSFER_CHUNK_SIZE, SettingsGetter
from nhttp.Utils import flushPrint, formatSize, getEnv, getLocalIPs

ADDRESS_IN_USE_ERRNOS = (errno.EADDRINUSE, getattr(errno, 'WSAEADDRINUSE', errno.EADDRINUSE))

logger = getLogger(__name__)


def setupGracefulShutdown():
    """Setup signal handlers for graceful shutdown on multiple Ctrl+C"""
    context = {'shutdownInProgress': False}

    def signalHandler(signum, frame):
        if context['shutdownInProgress']:
            # Second signal - force immediate exit without waiting for transfers
            os._exit(1)
        else:
            # First signal - set flag and unwind the main thread into the graceful path
            context['shutdownInProgress'] = True
            raise KeyboardInterrupt()

    signal.signal(signal.SIGINT, signalHandler)
    if hasattr(signal, 'SIGTERM'):
        signal.signal(signal.SIGTERM, signalHandler)


def setupSettings(args, rootDir):
    # Environment is read again here because .env is loaded after nhttp.Settings was imported
    return SettingsGetter(
        rootDir=rootDir,
        host=args.host,
        port=args.port,
        compress=args.compress,
        cors=args.cors,
        authCodes=args.authCodes,
        devMode=args.devMode,
        chunkSize=getEnv('TRANSFER_CHUNK_SIZE', TRANSFER_CHUNK_SIZE),
        listingWorkers=getEnv('NHTTP_LISTING_WORKERS', LISTING_WORKERS),
        shutdownGracePeriod=getEnv('NHTTP_SHUTDOWN_GRACE', SHUTDOWN_GRACE_PERIOD),
    )


def getServerURLs(settings, port):
    if settings.host in ('0.0.0.0', '::', ''):
        urls = [f'http://localhost:{port}']
        urls.extend(f'http://{ip}:{port}' for ip in getLocalIPs())
        return urls

    host = f'[{settings.host}]' if ':' in settings.host else settings.host
    return [f'http://{host}:{port}']


def printBanner(settings, urls):
    flushPrint(f"🚀 nhttp-server v{PUBLIC_VERSION}")
    flushPrint(f"   Directory: {settings.rootDir}")
    for url in urls:
        flushPrint(f"   Serving:   {url}")

    features = []
    if settings.authEnabled:
        features.append(f"auth ({len(settings.authCodes)} codes)")
    if settings.compress:
        features.append("compression")
    if settings.cors:
        features.append("CORS")
    if settings.devMode:
        features.append("dev mode")
    if features:
        flushPrint(f"   Enabled:   {', '.join(features)}")

    flushPrint(f"   Chunk size: {formatSize(settings.chunkSize)}")
    flushPrint("Press Ctrl+C to stop.")


def openBrowser(url):
    try:
        if not webbrowser.open(url):
            logger.warning(f"No browser available to open {url}")
    except webbrowser.Error as e:
        logger.warning(f"Unable to open browser: {e}")


def runServer(args):
    try:
        rootDir = resolveRootDir(args)
    except NotADirectoryError as e:
        flushPrint(f"❌ {e}")
        return 1

    settings = setupSettings(args, rootDir)

    try:
        server = createServer(settings=settings)
    except OSError as e:
        if e.errno in ADDRESS_IN_USE_ERRNOS:
            flushPrint(f"❌ Port {settings.port} is already in use")
        else:
            flushPrint(f"❌ Failed to start server: {e}")
        logger.debug(f"Bind failed on {settings.host}:{settings.port}", exc_info=True)
        return 1

    urls = getServerURLs(settings, server.port)
    printBanner(settings, urls)

    if args.openBrowser and not args.noBrowser:
        openBrowser(urls[0])

    setupGracefulShutdown()

    # serve_forever runs in a worker so the main thread stays free for signals
    serverThread = threading.Thread(target=server.serve_forever, name='nhttp-accept', daemon=True)
    serverThread.start()

    try:
        while serverThread.is_alive():
            serverThread.join(0.5)
    except KeyboardInterrupt:
        flushPrint(f"\nShutting down, waiting up to {settings.shutdownGracePeriod:g}s for active transfers...")
        server.shutdownGracefully()

    flushPrint("Bye.")
    return 0


def main(argv=None):
    # Load .env file early (before any configuration)
    loadEnvFile()

    parser = configureCLIParser()
    args = parser.parse_args(argv)

    configureLogging(args.logLevel)

    if args.version:
        showVersion()
        return 0

    return runServer(args)


if __name__ == '__main__':
    try:
        sys.exit(main() or 0)
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        sys.exit(0)

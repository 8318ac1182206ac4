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

import argparse
import json
import os
import logging
import logging.config
import platform

from nhttp.Kernel import PUBLIC_VERSION, getLogger, configureGlobalLogLevel, LOG_LEVEL_MAPPING
from nhttp.Settings import DEFAULT_HOST, DEFAULT_PORT
from nhttp.Utils import flushPrint, getEnv

ENV_FILE = '.env'

logger = getLogger(__name__)


def loadEnvFile(envFilePath=ENV_FILE):
    """
    Load KEY=VALUE pairs from a .env file in the working directory into os.environ.
    Variables already present in the environment are left untouched.

    Returns:
        int: number of variables loaded.
    """
    if not os.path.isfile(envFilePath):
        return 0

    loadedCount = 0
    try:
        with open(envFilePath, 'r', encoding='utf-8') as f:
            for lineNum, line in enumerate(f, 1):
                line = line.strip()

                # Skip empty lines and comments
                if not line or line.startswith('#'):
                    continue

                if line.startswith('export '):
                    line = line[len('export '):]

                key, sep, value = line.partition('=')
                key = key.strip()
                value = value.strip()

                if not sep or not key:
                    logger.warning(f'.env line {lineNum}: invalid format: {line}')
                    continue

                # Remove quotes if present (both single and double)
                if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                    value = value[1:-1]

                if key not in os.environ:
                    os.environ[key] = value
                    loadedCount += 1
                else:
                    logger.debug(f'.env: Skipped {key} (already set in environment)')

    except (OSError, UnicodeDecodeError) as e:
        flushPrint(f'Error: Unable to load {envFilePath}: {e}')
        logger.error(f'Unable to load {envFilePath}: {e}')
        return loadedCount

    logger.debug(f'Loaded {loadedCount} environment variables from {envFilePath}')
    return loadedCount


def configureLogging(logLevel):
    """Configure logging from a level name or a logging config JSON file

    Priority order:
    1. logLevel parameter (from --log-level CLI argument)
    2. NHTTP_LOGGING_LEVEL environment variable
    3. INFO, so the access log is visible by default
    """

    def suppressNoisyLogger():
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('NHTTP_LOGGING_LEVEL', None)

    if logLevel is None:
        logLevel = 'INFO'

    # Check if logLevel is a file path
    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, ValueError, KeyError, TypeError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")
            logLevel = 'INFO'

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.debug(f"Logging level set to {logLevel.upper()}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using INFO as default")
        configureGlobalLogLevel(logging.INFO)

    suppressNoisyLogger()
    return logLevel


def showVersion():
    """Display version and runtime information"""
    flushPrint(f"nhttp-server v{PUBLIC_VERSION}")
    flushPrint(f"Python {platform.python_version()} on {platform.system()} {platform.machine()}")


# Argument validators.
def validatePort(portStr):
    """Validate port number for argparse"""
    try:
        port = int(portStr)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port number: {portStr}")

    if not (1 <= port <= 65535):
        raise argparse.ArgumentTypeError(f"Port {port} is out of valid range (1-65535)")
    return port


def validateLogLevel(logLevel):
    """Validate log level for argparse"""
    # Allow file paths (they'll be validated later)
    if os.path.exists(logLevel):
        return logLevel

    validLevels = list(LOG_LEVEL_MAPPING)
    if logLevel.upper() not in validLevels:
        raise argparse.ArgumentTypeError(
            f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
        )
    return logLevel.upper()


def configureCLIParser():
    """Build the argument parser for the server command line."""
    parser = argparse.ArgumentParser(
        prog='nhttp-server',
        description='Lightweight static file server for the local network.',
    )

    parser.add_argument(
        'directory', metavar='DIRECTORY', nargs='?', default=None,
        help='Directory to serve (default: current directory)'
    )
    parser.add_argument(
        '-d', '--directory', metavar='PATH', dest='directoryOption',
        help='Directory to serve, takes precedence over the positional argument'
    )
    parser.add_argument(
        '-p', '--port', type=validatePort, default=DEFAULT_PORT, metavar='PORT',
        help=f'Port to listen on (1-65535, default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--host', default=DEFAULT_HOST, metavar='HOST',
        help=f'Address to bind (default: {DEFAULT_HOST})'
    )
    parser.add_argument(
        '-a', '--auth', nargs='+', metavar='CODE', dest='authCodes',
        help='Access codes; when given, visitors must enter one of them before browsing'
    )
    parser.add_argument(
        '-o', '--open', action='store_true', default=False, dest='openBrowser',
        help='Open the browser after the server starts'
    )
    parser.add_argument(
        '--no-browser', action='store_true', default=False, dest='noBrowser',
        help='Never open the browser, even together with --open'
    )
    parser.add_argument(
        '--compress', action='store_true', default=False,
        help='Compress text responses with gzip or deflate when the client accepts it'
    )
    parser.add_argument(
        '--cors', action='store_true', default=False,
        help='Send CORS headers allowing any origin'
    )
    parser.add_argument(
        '--log-level', type=validateLogLevel, metavar='LEVEL_OR_FILE', dest='logLevel',
        help='Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file (default: INFO)'
    )
    parser.add_argument(
        '--dev', action='store_true', default=None, dest='devMode',
        help='Development mode: stack traces in error pages, templates reloaded on every request'
    )
    parser.add_argument('--version', action='store_true', help='Show version information')

    return parser


def resolveRootDir(args):
    """
    Directory to serve from parsed arguments.

    Raises:
        NotADirectoryError: the path does not exist or is not a directory.
    """
    rootDir = os.path.abspath(args.directoryOption or args.directory or os.getcwd())
    if not os.path.isdir(rootDir):
        raise NotADirectoryError(f"Not a directory: {rootDir}")
    return rootDir

# CHIPSEC: Platform Security Assessment Framework
# Copyright (c) 2010-2021, Intel Corporation
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; Version 2.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.
#
# Contact information:
# chipsec@intel.com
#

"""
Logging functions
"""
import logging
import platform
import sys
import os
from typing import Optional
from enum import Enum

LOGGER_NAME = 'FIRMCODEC_LOGGER'


class level(Enum):
    DEBUG = 10
    VERBOSE = 13
    INFO = 20
    WARNING = 30
    ERROR = 40


class firmcodecFilter(logging.Filter):
    def __init__(self, name: str = '') -> None:
        super().__init__(name)

    def filter(self, record):
        if record.levelno == level.ERROR.value:
            record.additional = 'ERROR: '
        elif record.levelno == level.WARNING.value:
            record.additional = 'WARNING: '
        elif record.levelno == level.DEBUG.value:
            record.additional = '[*] [DEBUG] '
        elif record.levelno == level.VERBOSE.value:
            record.additional = '[*] [VERBOSE] '
        else:
            record.additional = ''
        return True


class firmcodecLogFormatter(logging.Formatter):
    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style='%') -> None:
        super().__init__(fmt, datefmt, style)
        self.infmt = fmt

    def format(self, record):
        if record.args:
            record.args = tuple()
        formatter = logging.Formatter(self.infmt)
        return formatter.format(record)


class firmcodecStreamFormatter(logging.Formatter):
    try:
        is_atty = sys.stdout.isatty()
    except AttributeError:
        is_atty = False
    # Respect https://no-color.org/ convention, and disable colorization
    # when the output is not a terminal (eg. redirection to a file)
    mPlatform = platform.system().lower()
    if is_atty and os.getenv('NO_COLOR') is None and mPlatform in ('windows', 'linux'):
        colors = {
            'GREY': '\033[90m',
            'RED': '\033[91m',
            'YELLOW': '\033[93m',
            'BLUE': '\033[94m',
            'WHITE': '\033[97m',
            'END': '\033[0m'}
    else:
        colors = {}

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style='%') -> None:
        super().__init__(fmt, datefmt, style)
        self.infmt = fmt

    def format(self, record):
        if record.levelno == level.DEBUG.value:
            color = 'BLUE'
        elif record.levelno == level.VERBOSE.value:
            color = 'GREY'
        elif record.levelno == level.WARNING.value:
            color = 'YELLOW'
        elif record.levelno == level.ERROR.value:
            color = 'RED'
        else:
            color = 'WHITE'
        if record.args:
            record.args = tuple()
        if color in self.colors:
            log_fmt = f'{self.colors[color]}{self.infmt}{self.colors["END"]}'
        else:
            log_fmt = self.infmt
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class Logger:
    """Class for logging codec diagnostics to console and text file."""

    def __init__(self):
        self.logfile = None
        self.logstream = logging.StreamHandler(sys.stdout)
        self.firmcodecLogger = logging.getLogger(LOGGER_NAME)
        self.firmcodecLogger.setLevel(logging.INFO)
        if not self.firmcodecLogger.handlers:
            self.firmcodecLogger.addHandler(self.logstream)
        if not self.firmcodecLogger.filters:
            self.firmcodecLogger.addFilter(firmcodecFilter(LOGGER_NAME))
        self.firmcodecLogger.propagate = False
        logging.addLevelName(level.VERBOSE.value, level.VERBOSE.name)
        self.logstream.setFormatter(firmcodecStreamFormatter('%(additional)s%(message)s'))
        self.logFormatter = firmcodecLogFormatter('%(additional)s%(message)s')

    def log(self, text: str, level: level = level.INFO) -> None:
        """Sends plain text to logging."""
        self.firmcodecLogger.log(level.value, text)

    def log_verbose(self, text: str) -> None:
        """Logs a Verbose message"""
        self.log(text, level.VERBOSE)

    def log_debug(self, text: str) -> None:
        """Logs a debug message"""
        self.log(text, level.DEBUG)

    def log_warning(self, text: str) -> None:
        """Logs a Warning message"""
        self.log(text, level.WARNING)

    def log_error(self, text: str) -> None:
        """Logs an Error message"""
        self.log(text, level.ERROR)

    def set_log_level(self, verbose: bool = False, debug: bool = False) -> None:
        self.VERBOSE = verbose or debug
        self.DEBUG = debug
        if self.DEBUG:
            self.firmcodecLogger.setLevel(level.DEBUG.value)
        elif self.VERBOSE:
            self.firmcodecLogger.setLevel(level.VERBOSE.value)
        else:
            self.firmcodecLogger.setLevel(level.INFO.value)

    def set_log_file(self, name: str) -> None:
        """Sets the log file for the output."""
        self.close()
        # specifying empty string (name='') effectively disables logging to file
        if not name:
            return
        try:
            self.logfile = logging.FileHandler(filename=name, mode='a')
        except OSError:
            self.log_warning(f'Could not open log file: {name}')
        else:
            self.logfile.setFormatter(self.logFormatter)
            self.firmcodecLogger.addHandler(self.logfile)
            self.LOG_FILE_NAME = name

    def close(self) -> None:
        """Closes the log file."""
        if self.logfile:
            self.firmcodecLogger.removeHandler(self.logfile)
            self.logfile.close()
            self.logfile = None
            self.LOG_FILE_NAME = ''

    VERBOSE: bool = False
    DEBUG: bool = False
    LOG_FILE_NAME: str = ''


_logger = Logger()


def logger() -> Logger:
    """Returns a Logger instance."""
    return _logger

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

from typing import List


# ================================================
# Codec errors
# ================================================

class FirmwareError(RuntimeError):
    """Base class of all codec errors.

    Parents add context to an error raised by a child with prefix(), so the
    final message reads outermost first, e.g.
    'failed to parse EFI file at 0x48: invalid FFS length, got 0x10'.
    """

    def __init__(self, msg: str) -> None:
        super(FirmwareError, self).__init__(msg)
        self.msg = msg
        self.context: List[str] = []

    def prefix(self, text: str) -> 'FirmwareError':
        self.context.insert(0, text)
        return self

    def __str__(self) -> str:
        return ''.join(self.context) + self.msg


class InvalidDataError(FirmwareError):
    """Structurally too small, nonsensical length or offset, constant mismatch."""
    pass


class InvalidFileError(FirmwareError):
    """Checksum mismatch, resource ceiling exceeded, required content missing."""
    pass


class InternalError(FirmwareError):
    """Invariant violation inside a structure that was otherwise recognized."""
    pass


class NotSupportedError(FirmwareError):
    """Recognized encoding the codec cannot process."""
    pass


# ================================================
# Configuration
# ================================================

class OptionsError(RuntimeError):
    pass

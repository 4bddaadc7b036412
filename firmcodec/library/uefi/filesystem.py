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
EFI firmware filesystem: the sequence of FFS files inside an FFS2/FFS3 volume
"""

from firmcodec.library.bits import padding_size
from firmcodec.library.exceptions import FirmwareError, InvalidFileError
from firmcodec.library.firmware import Firmware, ParseFlags
from firmcodec.library.logger import logger
from firmcodec.library.uefi.file import EfiFile
from firmcodec.library.uefi.uefi_common import EFI_FFS_FILE_HEADER

EFI_FFS_FREE_SPACE = b'\xFF' * EFI_FFS_FILE_HEADER.size


class EfiFilesystem(Firmware):

    def get_images_max(self) -> int:
        return self.config.filesystem_files_max

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        offset = 0
        while offset + EFI_FFS_FILE_HEADER.size <= len(buf):
            # ignore free space
            if buf[offset:offset + EFI_FFS_FILE_HEADER.size] == EFI_FFS_FREE_SPACE:
                logger().log_debug(f'ignoring free space @0x{offset:x} of 0x{len(buf):x}')
                break
            img = EfiFile(config=self.config)
            try:
                img.parse(buf, offset, flags | ParseFlags.NO_SEARCH)
            except FirmwareError as err:
                err.prefix(f'failed to parse EFI file at 0x{offset:x}: ')
                raise
            img.offset = offset
            self.add_image(img)
            offset += img.size

    def _write(self) -> bytes:
        size_max = self.config.filesystem_size_max
        buf = bytearray()
        for img in self._images:
            img.offset = len(buf)
            buf += img.write()
            buf += b'\xFF' * padding_size(len(buf), 1 << img.alignment)
            if len(buf) > size_max:
                raise InvalidFileError(f'EFI filesystem too large, 0x{len(buf):x} > 0x{size_max:x}')
        return bytes(buf)

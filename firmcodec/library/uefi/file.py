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
EFI FFS file parsing and writing
"""

from typing import Any, Dict
from uuid import UUID

from firmcodec.library.bits import align_up, is_set
from firmcodec.library.exceptions import FirmwareError, InternalError, InvalidDataError, InvalidFileError
from firmcodec.library.firmware import ExportFlags, Firmware, ParseFlags, parse_int
from firmcodec.library.logger import logger
from firmcodec.library.uefi.section import parse_sections
from firmcodec.library.uefi.uefi_common import (EFI_FFS_FILE_HEADER, EFI_FFS_FILE_HEADER2, EFI_FILE_STATE_DEFAULT,
                                                EFI_FV_FILETYPE_FIRMWARE_VOLUME_IMAGE, EFI_FV_FILETYPE_RAW,
                                                FFS_ATTRIB_CHECKSUM, FFS_ATTRIB_LARGE_FILE, FFS_FILE_ALIGNMENT,
                                                FFS_FILE_SIZE_MAX, FILE_TYPE_NAMES, FvChecksum8, guid_str)

# offsets of the bytes left out of the header checksum
EFI_FFS_FILE_HEADER_CHECKSUM_SKIP = (0x10, 0x11, 0x17)


def file_header_checksum8(hdr) -> int:
    """8-bit checksum of a file header without its checksum and state bytes."""
    checksum = 0
    for i, b in enumerate(bytes(hdr)):
        if i in EFI_FFS_FILE_HEADER_CHECKSUM_SKIP:
            continue
        checksum = (checksum + b) & 0xFF
    return (0x100 - checksum) & 0xFF


class EfiFile(Firmware):

    def __init__(self, config=None) -> None:
        super(EfiFile, self).__init__(config)
        self.type = EFI_FV_FILETYPE_RAW
        self.attrib = 0
        self.state = EFI_FILE_STATE_DEFAULT
        self.alignment = FFS_FILE_ALIGNMENT

    def get_images_max(self) -> int:
        return self.config.section_images_max

    def _str_extra(self) -> str:
        return f'type={FILE_TYPE_NAMES.get(self.type, f"0x{self.type:02X}")} attrib=0x{self.attrib:02X} state=0x{self.state:02X}'

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        st = EFI_FFS_FILE_HEADER.unpack(buf)
        self.id = guid_str(st['name'])
        self.type = st['type']
        self.attrib = st['attrs']
        self.state = st['state']
        size = st['size']
        hdr_len = EFI_FFS_FILE_HEADER.size
        if is_set(self.attrib, FFS_ATTRIB_LARGE_FILE):
            size = EFI_FFS_FILE_HEADER2.get(buf, 'extended_size')
            hdr_len = EFI_FFS_FILE_HEADER2.size
        if size < hdr_len:
            raise InternalError(f'invalid FFS length, got 0x{size:x}')
        if size > len(buf):
            raise InvalidDataError(f'invalid FFS length, got 0x{size:x} from stream of size 0x{len(buf):x}')
        if self.state != EFI_FILE_STATE_DEFAULT:
            logger().log_debug(f'EFI file {{{self.id}}} has state 0x{self.state:02X}')

        if not flags & ParseFlags.IGNORE_CHECKSUM:
            hdr_checksum = file_header_checksum8(buf[:hdr_len])
            if hdr_checksum != st['hdr_checksum']:
                raise InvalidFileError(f'checksum invalid, got 0x{st["hdr_checksum"]:02x}, expected 0x{hdr_checksum:02x}')

        body = buf[hdr_len:size]
        if self.type == EFI_FV_FILETYPE_FIRMWARE_VOLUME_IMAGE:
            try:
                parse_sections(self, body, flags)
            except FirmwareError as err:
                err.prefix(f'failed to add EFI section for file {{{self.id}}}: ')
                raise
        else:
            self.set_bytes(body)

        if is_set(self.attrib, FFS_ATTRIB_CHECKSUM) and not flags & ParseFlags.IGNORE_CHECKSUM:
            data_checksum = FvChecksum8(body)
            if data_checksum != st['data_checksum']:
                raise InvalidFileError(f'data checksum invalid, got 0x{st["data_checksum"]:02x}, expected 0x{data_checksum:02x}')

        # the next file starts on an 8 byte boundary
        self.size = align_up(size, 1 << self.alignment)

    def _write(self) -> bytes:
        if self.id is None:
            raise InternalError('no GUID set for EFI file')
        payload = self.write_payload()

        attrib = self.attrib & ~FFS_ATTRIB_LARGE_FILE
        size = EFI_FFS_FILE_HEADER.size + len(payload)
        if size > FFS_FILE_SIZE_MAX:
            attrib |= FFS_ATTRIB_LARGE_FILE
            size = EFI_FFS_FILE_HEADER2.size + len(payload)
        if size > self.config.file_size_max:
            raise InvalidFileError(f'EFI file too large, 0x{size:x} > 0x{self.config.file_size_max:x}')

        values = {
            'name': UUID(self.id),
            'data_checksum': FvChecksum8(payload),
            'type': self.type,
            'attrs': attrib,
            'state': self.state,
        }
        if is_set(attrib, FFS_ATTRIB_LARGE_FILE):
            values['extended_size'] = size
            buf = EFI_FFS_FILE_HEADER2.pack(values)
        else:
            values['size'] = size
            buf = EFI_FFS_FILE_HEADER.pack(values)
        EFI_FFS_FILE_HEADER.set(buf, 'hdr_checksum', file_header_checksum8(buf))
        return bytes(buf) + payload

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        node['type'] = f'0x{self.type:x}'
        node['attrib'] = f'0x{self.attrib:x}'
        if self.state != EFI_FILE_STATE_DEFAULT:
            node['state'] = f'0x{self.state:x}'
        if flags & ExportFlags.INCLUDE_DEBUG:
            node['type_name'] = FILE_TYPE_NAMES.get(self.type, 'FV_UNKNOWN')

    def _build(self, node: Dict[str, Any]) -> None:
        if 'type' in node:
            self.type = parse_int(node['type'], 'type')
        if 'attrib' in node:
            self.attrib = parse_int(node['attrib'], 'attrib')
        if 'state' in node:
            self.state = parse_int(node['state'], 'state')

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
EFI FFS section parsing and writing
"""

import zlib
from typing import Any, Dict, Optional
from uuid import UUID

from firmcodec.library.bits import align_up, is_set
from firmcodec.library.exceptions import FirmwareError, InternalError, InvalidDataError, InvalidFileError
from firmcodec.library.firmware import ExportFlags, Firmware, ParseFlags, parse_int
from firmcodec.library.logger import logger
from firmcodec.library.uefi.compression import (COMPRESSION_TYPE_EFI_STANDARD, COMPRESSION_TYPE_LZMA,
                                                COMPRESSION_TYPE_TIANO, UefiCompression)
from firmcodec.library.uefi.uefi_common import (EFI_COMMON_SECTION_HEADER, EFI_COMMON_SECTION_HEADER2,
                                                EFI_COMPRESSION_SECTION, EFI_CRC32_GUIDED_SECTION_EXTRACTION_PROTOCOL_GUID,
                                                EFI_CRC32_SIZE, EFI_FREEFORM_SUBTYPE_GUID_SECTION,
                                                EFI_GUID_DEFINED_SECTION, EFI_GUIDED_SECTION_AUTH_STATUS_VALID,
                                                EFI_NOT_COMPRESSED, EFI_SECTION_ALIGNMENT, EFI_SECTION_COMPRESSION,
                                                EFI_SECTION_FIRMWARE_VOLUME_IMAGE, EFI_SECTION_FREEFORM_SUBTYPE_GUID,
                                                EFI_SECTION_GUID_DEFINED, EFI_SECTION_OPAQUE_TYPES, EFI_SECTION_RAW,
                                                EFI_SECTION_SIZE_EXTENDED, EFI_SECTION_USER_INTERFACE,
                                                EFI_SECTION_VERSION, EFI_SELF_TEST_GUID, EFI_VERSION_SECTION,
                                                FREEFORM_SUBTYPE_GUID_NAMES, LZMA_CUSTOM_DECOMPRESS_GUID,
                                                SECTION_NAMES, TIANO_DECOMPRESSED_GUID,
                                                decode_utf16, encode_utf16, guid_str, guid_to_name)

# GUID-defined encapsulations decoded by a compression algorithm
GUIDED_COMPRESSION = {
    LZMA_CUSTOM_DECOMPRESS_GUID: COMPRESSION_TYPE_LZMA,
    TIANO_DECOMPRESSED_GUID: COMPRESSION_TYPE_TIANO,
}


def parse_sections(firmware: Firmware, buf: memoryview, flags: ParseFlags) -> None:
    """Parses a sequence of 4-byte aligned sections into children of firmware."""
    offset = 0
    while offset < len(buf):
        img = EfiSection(config=firmware.config)
        try:
            img.parse(buf, offset, flags | ParseFlags.NO_SEARCH)
        except FirmwareError as err:
            err.prefix(f'failed to parse section at 0x{offset:x}: ')
            raise
        if img.size == 0:
            raise InvalidDataError(f'section size is zero at 0x{offset:x}')
        img.offset = offset
        firmware.add_image(img)
        offset += align_up(img.size, 1 << EFI_SECTION_ALIGNMENT)


class EfiSection(Firmware):

    def __init__(self, config=None) -> None:
        super(EfiSection, self).__init__(config)
        self.type = EFI_SECTION_RAW
        self.alignment = EFI_SECTION_ALIGNMENT
        self.user_interface: Optional[str] = None
        self.guid_attrs = 0
        self.guid_preamble = b''
        self.compression_type = EFI_NOT_COMPRESSED
        self.uncompressed_length = 0
        self.subtype_guid: Optional[UUID] = None

    def get_images_max(self) -> int:
        return self.config.section_images_max

    def _str_extra(self) -> str:
        _s = f'type={SECTION_NAMES.get(self.type, f"0x{self.type:02X}")}'
        if self.user_interface is not None:
            _s += f' "{self.user_interface}"'
        return _s

    ##################################################################################
    # Parsing
    ##################################################################################

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        st = EFI_COMMON_SECTION_HEADER.unpack(buf)
        size = st['size']
        hdr_len = EFI_COMMON_SECTION_HEADER.size
        if size == EFI_SECTION_SIZE_EXTENDED:
            st = EFI_COMMON_SECTION_HEADER2.unpack(buf)
            size = st['extended_size']
            hdr_len = EFI_COMMON_SECTION_HEADER2.size
        if size < hdr_len:
            raise InternalError(f'invalid section size, got 0x{size:x}')
        if size > len(buf):
            raise InternalError(f'invalid section size, got 0x{size:x} from stream of size 0x{len(buf):x}')
        self.type = st['type']
        self.size = size

        offset = hdr_len
        if self.type == EFI_SECTION_GUID_DEFINED:
            st_def = EFI_GUID_DEFINED_SECTION.unpack(buf, hdr_len)
            self.id = guid_str(st_def['name'])
            self.guid_attrs = st_def['attrs']
            sub_end = hdr_len + EFI_GUID_DEFINED_SECTION.size
            offset = st_def['offset']
            if offset < sub_end or offset > size:
                raise InternalError(f'invalid section data offset, got 0x{offset:x}')
            self.guid_preamble = bytes(buf[sub_end:offset])

        body = buf[offset:size]
        if self.type == EFI_SECTION_FIRMWARE_VOLUME_IMAGE:
            self._parse_volume(body, flags)
        elif self.type == EFI_SECTION_GUID_DEFINED:
            self._parse_guid_defined(body, flags)
        elif self.type == EFI_SECTION_COMPRESSION:
            self._parse_compression(body, flags)
        elif self.type == EFI_SECTION_USER_INTERFACE:
            self.user_interface = decode_utf16(body)
        elif self.type == EFI_SECTION_VERSION:
            self.version_raw = EFI_VERSION_SECTION.get(body, 'build_number')
            self.version = decode_utf16(body[EFI_VERSION_SECTION.size:])
        elif self.type == EFI_SECTION_FREEFORM_SUBTYPE_GUID:
            self.subtype_guid = EFI_FREEFORM_SUBTYPE_GUID_SECTION.get(body, 'sub_type_guid')
            label = FREEFORM_SUBTYPE_GUID_NAMES.get(self.subtype_guid, 'unknown')
            logger().log_debug(f'freeform subtype GUID {{{guid_str(self.subtype_guid)}}} [{label}]')
            self.set_bytes(body)
        else:
            if self.type not in EFI_SECTION_OPAQUE_TYPES:
                logger().log_warning(f'no idea how to parse section of type 0x{self.type:02X}')
            self.set_bytes(body)

    def _parse_volume(self, body: memoryview, flags: ParseFlags) -> None:
        from firmcodec.library.uefi.volume import EfiVolume
        img = EfiVolume(config=self.config)
        try:
            img.parse(body, 0, flags | ParseFlags.NO_SEARCH)
        except FirmwareError as err:
            err.prefix('failed to parse nested volume: ')
            raise
        self.add_image(img)

    def _parse_guid_defined(self, body: memoryview, flags: ParseFlags) -> None:
        guid = UUID(self.id)
        if guid in GUIDED_COMPRESSION:
            try:
                data = UefiCompression().decompress_efi_binary(body, GUIDED_COMPRESSION[guid],
                                                               max_length=self.config.file_size_max)
            except FirmwareError as err:
                err.prefix(f'failed to decompress {guid_to_name(guid)} section: ')
                raise
            parse_sections(self, memoryview(data), flags)
        elif guid == EFI_CRC32_GUIDED_SECTION_EXTRACTION_PROTOCOL_GUID:
            if len(self.guid_preamble) < EFI_CRC32_SIZE:
                raise InternalError(f'CRC32 section preamble too small, got 0x{len(self.guid_preamble):x}')
            if is_set(self.guid_attrs, EFI_GUIDED_SECTION_AUTH_STATUS_VALID) and not flags & ParseFlags.IGNORE_CHECKSUM:
                crc_expected = int.from_bytes(self.guid_preamble[:EFI_CRC32_SIZE], 'little')
                crc_actual = zlib.crc32(body) & 0xFFFFFFFF
                if crc_actual != crc_expected:
                    raise InvalidFileError(f'CRC32 invalid, got 0x{crc_actual:08x}, expected 0x{crc_expected:08x}')
            parse_sections(self, body, flags)
        elif guid == EFI_SELF_TEST_GUID:
            self.set_bytes(body)
        else:
            logger().log_warning(f'no idea how to decompress encapsulation section {{{self.id}}}')
            self.set_bytes(body)

    def _parse_compression(self, body: memoryview, flags: ParseFlags) -> None:
        st = EFI_COMPRESSION_SECTION.unpack(body)
        self.compression_type = st['compression_type']
        self.uncompressed_length = st['uncompressed_length']
        data = body[EFI_COMPRESSION_SECTION.size:]
        if self.compression_type != EFI_NOT_COMPRESSED:
            try:
                data = memoryview(UefiCompression().decompress_efi_binary(data, COMPRESSION_TYPE_EFI_STANDARD,
                                                                          self.uncompressed_length,
                                                                          self.config.file_size_max))
            except FirmwareError as err:
                err.prefix('failed to decompress compression section: ')
                raise
        parse_sections(self, data, flags)

    ##################################################################################
    # Writing
    ##################################################################################

    def _write_body(self) -> bytes:
        if self.type == EFI_SECTION_USER_INTERFACE and self.user_interface is not None:
            return encode_utf16(self.user_interface)
        if self.type == EFI_SECTION_VERSION and self.version is not None:
            return bytes(EFI_VERSION_SECTION.pack({'build_number': self.version_raw})) + encode_utf16(self.version)
        data = self.write_payload()
        # without children the payload is already encoded
        if not self._images:
            return data
        if self.type == EFI_SECTION_COMPRESSION:
            self.uncompressed_length = len(data)
            if self.compression_type == EFI_NOT_COMPRESSED:
                return data
            return UefiCompression().compress_efi_binary(data, COMPRESSION_TYPE_EFI_STANDARD)
        if self.type == EFI_SECTION_GUID_DEFINED:
            guid = UUID(self.id)
            if guid in GUIDED_COMPRESSION:
                return UefiCompression().compress_efi_binary(data, GUIDED_COMPRESSION[guid])
            if guid == EFI_CRC32_GUIDED_SECTION_EXTRACTION_PROTOCOL_GUID:
                crc = zlib.crc32(data) & 0xFFFFFFFF
                self.guid_preamble = crc.to_bytes(EFI_CRC32_SIZE, 'little') + self.guid_preamble[EFI_CRC32_SIZE:]
        return data

    def _write(self) -> bytes:
        if self.type == EFI_SECTION_GUID_DEFINED and self.id is None:
            raise InternalError('no GUID set for GUID defined section')
        payload = self._write_body()

        sub_size = 0
        if self.type == EFI_SECTION_GUID_DEFINED:
            sub_size = EFI_GUID_DEFINED_SECTION.size + len(self.guid_preamble)
        elif self.type == EFI_SECTION_COMPRESSION:
            sub_size = EFI_COMPRESSION_SECTION.size

        hdr_len = EFI_COMMON_SECTION_HEADER.size
        if hdr_len + sub_size + len(payload) >= EFI_SECTION_SIZE_EXTENDED:
            hdr_len = EFI_COMMON_SECTION_HEADER2.size
        size = hdr_len + sub_size + len(payload)
        if hdr_len == EFI_COMMON_SECTION_HEADER2.size:
            buf = EFI_COMMON_SECTION_HEADER2.pack({'type': self.type, 'extended_size': size})
        else:
            buf = EFI_COMMON_SECTION_HEADER.pack({'size': size, 'type': self.type})

        if self.type == EFI_SECTION_GUID_DEFINED:
            buf += EFI_GUID_DEFINED_SECTION.pack({'name': UUID(self.id),
                                                  'offset': hdr_len + sub_size,
                                                  'attrs': self.guid_attrs})
            buf += self.guid_preamble
        elif self.type == EFI_SECTION_COMPRESSION:
            buf += EFI_COMPRESSION_SECTION.pack({'uncompressed_length': self.uncompressed_length,
                                                 'compression_type': self.compression_type})
        buf += payload
        return bytes(buf)

    ##################################################################################
    # Export / build
    ##################################################################################

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        node['type'] = f'0x{self.type:x}'
        if flags & ExportFlags.INCLUDE_DEBUG:
            node['type_name'] = SECTION_NAMES.get(self.type, 'S_UNKNOWN')
            if self.type == EFI_SECTION_GUID_DEFINED and self.id is not None:
                name = guid_to_name(UUID(self.id))
                if name:
                    node['guid_name'] = name
            if self.subtype_guid is not None:
                node['subtype_guid'] = guid_str(self.subtype_guid)
        if self.user_interface is not None:
            node['user_interface'] = self.user_interface
        if self.type == EFI_SECTION_GUID_DEFINED:
            node['guid_attrs'] = f'0x{self.guid_attrs:x}'
            if self.guid_preamble:
                node['guid_preamble'] = self.guid_preamble.hex()
        elif self.type == EFI_SECTION_COMPRESSION:
            node['compression_type'] = f'0x{self.compression_type:x}'
            node['uncompressed_length'] = f'0x{self.uncompressed_length:x}'

    def _build(self, node: Dict[str, Any]) -> None:
        if 'type' in node:
            self.type = parse_int(node['type'], 'type')
        if 'user_interface' in node:
            self.user_interface = node['user_interface']
        if 'guid_attrs' in node:
            self.guid_attrs = parse_int(node['guid_attrs'], 'guid_attrs')
        if 'guid_preamble' in node:
            try:
                self.guid_preamble = bytes.fromhex(node['guid_preamble'])
            except ValueError as err:
                raise InvalidDataError(f'guid_preamble is not valid hex: {err}')
        if 'compression_type' in node:
            self.compression_type = parse_int(node['compression_type'], 'compression_type')
        if 'uncompressed_length' in node:
            self.uncompressed_length = parse_int(node['uncompressed_length'], 'uncompressed_length')

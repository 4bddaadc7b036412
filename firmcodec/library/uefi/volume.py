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
UEFI Firmware Volume parsing and writing
"""

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from firmcodec.library.bits import align_up, get_bits
from firmcodec.library.exceptions import FirmwareError, InternalError, InvalidDataError, InvalidFileError
from firmcodec.library.firmware import ExportFlags, Firmware, ParseFlags, parse_int
from firmcodec.library.logger import logger
from firmcodec.library.uefi.filesystem import EfiFilesystem
from firmcodec.library.uefi.uefi_common import (EFI_FIRMWARE_VOLUME_EXT_ENTRY, EFI_FIRMWARE_VOLUME_EXT_HEADER,
                                                EFI_FIRMWARE_VOLUME_HEADER, EFI_FS_GUIDS, EFI_FV_BLOCK_MAP_ENTRY,
                                                EFI_FV_BLOCK_SIZE, EFI_FV_EXT_TYPE_END, EFI_FV_HEADER_WRITE_SIZE,
                                                EFI_FVB2_ALIGNMENT_1M, EFI_FVB2_ALIGNMENT_2G,
                                                EFI_FVB2_ALIGNMENT_SHIFT, EFI_FVB2_DEFAULT_ATTRIBUTES,
                                                EFI_FVH_REVISION, EFI_FVH_SIGNATURE, EFI_SYSTEM_NV_DATA_FV_GUID,
                                                FvChecksum16, FvSum16, guid_str, guid_to_name)

EFI_FVH_SIGNATURE_OFFSET = EFI_FIRMWARE_VOLUME_HEADER.fields['signature'].offset


class EfiVolume(Firmware):

    def __init__(self, config=None) -> None:
        super(EfiVolume, self).__init__(config)
        self.attrs = EFI_FVB2_DEFAULT_ATTRIBUTES
        self.blockmap: List[Tuple[int, int]] = []
        # offset of the extended header from the start of the body
        self.ext_hdr_offset: Optional[int] = None

    def get_images_max(self) -> int:
        return self.config.volume_images_max

    def _str_extra(self) -> str:
        name = guid_to_name(UUID(self.id)) if self.id else None
        _s = f'attrs=0x{self.attrs:04X} alignment=0x{self.alignment:X}'
        if name:
            _s = f'[{name}] {_s}'
        return _s

    ##################################################################################
    # Parsing
    ##################################################################################

    @classmethod
    def validate(cls, buf: memoryview, offset: int) -> None:
        EFI_FIRMWARE_VOLUME_HEADER.validate(buf, offset)

    def search(self, buf: memoryview, offset: int) -> int:
        signature = EFI_FVH_SIGNATURE.to_bytes(4, 'little')
        pos = bytes(buf[offset + EFI_FVH_SIGNATURE_OFFSET:]).find(signature)
        if pos == -1:
            raise InvalidDataError(f'no EFI firmware volume signature found after 0x{offset:x}')
        return offset + pos

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        st = EFI_FIRMWARE_VOLUME_HEADER.unpack(buf)
        guid = st['guid']
        self.id = guid_str(guid)
        logger().log_debug(f'volume GUID: {{{self.id}}} [{guid_to_name(guid) or "unknown"}]')

        fv_length = st['length']
        if fv_length == 0:
            raise InternalError('invalid volume length')
        if fv_length > self.config.volume_size_max:
            raise InvalidFileError(f'volume length 0x{fv_length:x} exceeds maximum 0x{self.config.volume_size_max:x}')

        attrs = st['attrs']
        alignment = get_bits(attrs, EFI_FVB2_ALIGNMENT_SHIFT, 8)
        if alignment > EFI_FVB2_ALIGNMENT_2G:
            raise InvalidDataError(f'alignment invalid, got 0x{alignment:x}')
        self.attrs = attrs & 0xFFFF
        self.alignment = alignment

        hdr_len = st['hdr_len']
        if hdr_len < EFI_FIRMWARE_VOLUME_HEADER.size or hdr_len > fv_length or hdr_len > len(buf) or hdr_len % 2:
            raise InternalError(f'invalid volume header length 0x{hdr_len:x}')
        if st['revision'] != EFI_FVH_REVISION:
            raise InternalError(f'revision invalid, got 0x{st["revision"]:x}, expected 0x{EFI_FVH_REVISION:x}')

        if not flags & ParseFlags.IGNORE_CHECKSUM:
            checksum = FvSum16(buf[:hdr_len])
            if checksum != 0:
                checksum_expected = (st['checksum'] - checksum) & 0xFFFF
                raise InvalidFileError(f'checksum invalid, got 0x{st["checksum"]:04x}, expected 0x{checksum_expected:04x}')

        ext_hdr = st['ext_hdr']
        if ext_hdr != 0:
            self._parse_ext_header(buf, ext_hdr, fv_length)
            self.ext_hdr_offset = ext_hdr - hdr_len if ext_hdr >= hdr_len else None

        if fv_length > len(buf):
            raise InvalidDataError(f'failed to cut EFI volume, length 0x{fv_length:x} larger than stream 0x{len(buf):x}')
        self.size = fv_length
        body = buf[hdr_len:fv_length]

        # parse, which might cascade and do something like FFS2
        if guid in EFI_FS_GUIDS:
            img = EfiFilesystem(config=self.config)
            try:
                img.parse(body, 0, flags | ParseFlags.NO_SEARCH)
            except FirmwareError as err:
                err.prefix(f'failed to parse EFI filesystem of volume {{{self.id}}}: ')
                raise
            img.offset = hdr_len
            self.add_image(img)
        else:
            if guid == EFI_SYSTEM_NV_DATA_FV_GUID:
                logger().log_debug(f'ignoring NVRAM volume {{{self.id}}}')
            else:
                logger().log_warning(f'no idea how to parse {{{self.id}}} [{guid_to_name(guid) or "unknown"}] EFI volume')
            self.set_bytes(body)

        self._parse_blockmap(buf, fv_length)

    def _parse_ext_header(self, buf: memoryview, ext_hdr: int, fv_length: int) -> None:
        st_ext = EFI_FIRMWARE_VOLUME_EXT_HEADER.unpack(buf, ext_hdr)
        logger().log_debug(f'volume name: {{{guid_str(st_ext["fv_name"])}}}')
        offset = ext_hdr + st_ext['size']
        while offset < fv_length:
            st_entry = EFI_FIRMWARE_VOLUME_EXT_ENTRY.unpack(buf, offset)
            if st_entry['size'] == 0:
                raise InvalidDataError('EFI_VOLUME_EXT_ENTRY invalid size')
            if st_entry['size'] == EFI_FV_EXT_TYPE_END:
                break
            offset += st_entry['size']

    def _parse_blockmap(self, buf: memoryview, fv_length: int) -> None:
        self.blockmap = []
        blockmap_sz = 0
        offset = EFI_FIRMWARE_VOLUME_HEADER.size
        while offset < len(buf):
            st_blk = EFI_FV_BLOCK_MAP_ENTRY.unpack(buf, offset)
            offset += EFI_FV_BLOCK_MAP_ENTRY.size
            if st_blk['num_blocks'] == 0 and st_blk['length'] == 0:
                break
            self.blockmap.append((st_blk['num_blocks'], st_blk['length']))
            blockmap_sz += st_blk['num_blocks'] * st_blk['length']
        if blockmap_sz < fv_length:
            raise InternalError('blocks allocated is less than volume length')

    ##################################################################################
    # Writing
    ##################################################################################

    def _write(self) -> bytes:
        if self.alignment > EFI_FVB2_ALIGNMENT_1M:
            raise InvalidFileError(f'alignment invalid, got 0x{self.alignment:x}')
        if self.id is None:
            raise InternalError('no GUID set for EFI FV')
        payload = self.write_payload()

        hdr_len = EFI_FV_HEADER_WRITE_SIZE
        # child offsets are relative to the start of the volume
        for img in self._images:
            img.offset += hdr_len
        fv_length = align_up(hdr_len + len(payload), 1 << self.alignment)
        if self.size > fv_length:
            fv_length = self.size
        ext_hdr = 0
        if self.ext_hdr_offset is not None:
            ext_hdr = hdr_len + self.ext_hdr_offset

        buf = EFI_FIRMWARE_VOLUME_HEADER.pack({
            'guid': UUID(self.id),
            'length': fv_length,
            'attrs': self.attrs | (self.alignment << EFI_FVB2_ALIGNMENT_SHIFT),
            'hdr_len': hdr_len,
            'ext_hdr': ext_hdr,
            'revision': EFI_FVH_REVISION,
        })
        num_blocks = align_up(fv_length, EFI_FV_BLOCK_SIZE) // EFI_FV_BLOCK_SIZE
        buf += EFI_FV_BLOCK_MAP_ENTRY.pack({'num_blocks': num_blocks, 'length': EFI_FV_BLOCK_SIZE})
        buf += EFI_FV_BLOCK_MAP_ENTRY.pack()
        EFI_FIRMWARE_VOLUME_HEADER.set(buf, 'checksum', FvChecksum16(buf))

        buf += payload
        buf += b'\xFF' * (fv_length - len(buf))
        return bytes(buf)

    ##################################################################################
    # Export / build
    ##################################################################################

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        node['attrs'] = f'0x{self.attrs:x}'
        if self.ext_hdr_offset is not None:
            node['ext_hdr_offset'] = f'0x{self.ext_hdr_offset:x}'
        if flags & ExportFlags.INCLUDE_DEBUG and self.id is not None:
            name = guid_to_name(UUID(self.id))
            if name:
                node['guid_name'] = name

    def _build(self, node: Dict[str, Any]) -> None:
        if 'attrs' in node:
            self.attrs = parse_int(node['attrs'], 'attrs') & 0xFFFF
        if 'ext_hdr_offset' in node:
            self.ext_hdr_offset = parse_int(node['ext_hdr_offset'], 'ext_hdr_offset')

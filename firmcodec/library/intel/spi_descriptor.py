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
Intel Flash Descriptor parsing and writing

The descriptor occupies the first 4 KiB of the SPI flash image and points at
the component (FCBA), region (FRBA) and master (FMBA) tables. Every present
region becomes a child image placed at its base address.
"""

from typing import Any, Dict, List, Tuple

from firmcodec.library.bits import BOUNDARY_4KB, align_up, get_bits, set_bits
from firmcodec.library.exceptions import FirmwareError, InternalError, InvalidDataError, InvalidFileError
from firmcodec.library.firmware import ExportFlags, Firmware, ParseFlags, parse_bool, parse_int
from firmcodec.library.intel.spi import (BIOS, SPI_FCBA, SPI_FDBAR, SPI_FLA_SHIFT, SPI_FLASH_DESCRIPTOR_RESERVED,
                                         SPI_FLASH_DESCRIPTOR_SIGNATURE, SPI_FLASH_DESCRIPTOR_SIZE, SPI_FLREG,
                                         SPI_FMBA, SPI_FREGx_NOT_USED, SPI_MASTER_NAMES, SPI_NUM_REGIONS_DEFAULT,
                                         IfdAccess, get_SPI_master_access, get_SPI_region, make_SPI_region,
                                         region_id, region_name)
from firmcodec.library.logger import logger
from firmcodec.library.uefi.volume import EfiVolume

SPI_FDBAR_SIGNATURE_OFFSET = SPI_FDBAR.fields['signature'].offset


class IfdImage(Firmware):
    """A single flash region."""

    def __init__(self, config=None) -> None:
        super(IfdImage, self).__init__(config)
        self.alignment = SPI_FLA_SHIFT
        self.access: Dict[int, IfdAccess] = {}

    def get_access(self, master: int) -> IfdAccess:
        return self.access.get(master, IfdAccess.NONE)

    def set_access(self, master: int, access: IfdAccess) -> None:
        self.access[master] = IfdAccess(access)

    def _str_extra(self) -> str:
        _s = f'[{region_name(self.idx)}]'
        for master, access in sorted(self.access.items()):
            _s += f' {SPI_MASTER_NAMES.get(master, master)}={str(access) if access else "-"}'
        return _s

    def _write(self) -> bytes:
        data = self.write_payload()
        size = align_up(max(self.size, len(data), BOUNDARY_4KB), BOUNDARY_4KB)
        return data + b'\xFF' * (size - len(data))

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        for master, access in sorted(self.access.items()):
            if access:
                node[f'access_{SPI_MASTER_NAMES.get(master, master)}'] = str(access)

    def _build(self, node: Dict[str, Any]) -> None:
        masters = {name: master for master, name in SPI_MASTER_NAMES.items()}
        for key, value in node.items():
            if not key.startswith('access_'):
                continue
            name = key[len('access_'):]
            master = masters.get(name)
            if master is None:
                master = parse_int(name, key)
            try:
                self.set_access(master, IfdAccess.from_string(value))
            except ValueError as err:
                raise InvalidDataError(f'{key}: {err}')


class IfdBios(IfdImage):
    """The BIOS region, a sequence of EFI firmware volumes."""

    def get_images_max(self) -> int:
        return self.config.bios_volumes_max

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        offset = 0
        while offset < len(buf):
            fv = EfiVolume(config=self.config)
            try:
                fv.parse(buf, offset, flags | ParseFlags.NO_SEARCH)
            except FirmwareError as err:
                logger().log_debug(f'[spi] no volume @ 0x{offset:x} of 0x{len(buf):x}: {err}')
                offset += BOUNDARY_4KB
                continue
            self.add_image(fv)
            offset += fv.size
        if not self._images:
            raise InvalidFileError('no EFI firmware volumes')

    def write_images(self) -> bytes:
        buf = bytearray()
        for fv in self._images:
            fv.offset = max(fv.offset, len(buf))
            buf += b'\xFF' * (fv.offset - len(buf))
            buf += fv.write()
        return bytes(buf)


def check_size(buf: memoryview, offset: int) -> None:
    if len(buf) - offset <= SPI_FLASH_DESCRIPTOR_SIZE:
        raise InternalError(f'file is too small, expected bufsz > 0x{SPI_FLASH_DESCRIPTOR_SIZE:x}')


class IfdFirmware(Firmware):
    """SPI flash image described by an Intel Flash Descriptor."""

    def __init__(self, config=None) -> None:
        super(IfdFirmware, self).__init__(config)
        self.is_skylake = True
        self.descriptor_map0 = 0
        self.descriptor_map1 = 0
        self.descriptor_map2 = 0
        self.num_regions = SPI_NUM_REGIONS_DEFAULT
        self.num_components = 0
        self.flash_region_base_addr = 0x40
        self.flash_component_base_addr = 0x30
        self.flash_master_base_addr = 0x80
        self.flash_ich_strap_base_addr = 0x100
        self.flash_mch_strap_base_addr = 0x300
        # index 0 is unused, masters are numbered from 1
        self.flash_master = [0, 0x00A00F00, 0x00400D00, 0x00800900]
        self.components_rcd = 0
        self.illegal_jedec = 0
        self.illegal_jedec1 = 0
        self.flash_descriptor_regs: List[int] = []

    def _str_extra(self) -> str:
        return f'regions={self.num_regions:d} components={self.num_components + 1:d} skylake={self.is_skylake}'

    def check_jedec_cmd(self, cmd: int) -> bool:
        """Returns False if cmd is in one of the illegal JEDEC command slots."""
        for j in range(0, 32, 8):
            if get_bits(self.illegal_jedec, j, 8) == cmd:
                return False
            if get_bits(self.illegal_jedec1, j, 8) == cmd:
                return False
        return True

    ##################################################################################
    # Descriptor map
    ##################################################################################

    def _decode_descriptor_maps(self) -> None:
        self.num_regions = get_bits(self.descriptor_map0, 24, 3) or SPI_NUM_REGIONS_DEFAULT
        self.num_components = get_bits(self.descriptor_map0, 8, 2)
        self.flash_component_base_addr = get_bits(self.descriptor_map0, 0, 8) << 4
        self.flash_region_base_addr = get_bits(self.descriptor_map0, 16, 8) << 4
        self.flash_master_base_addr = get_bits(self.descriptor_map1, 0, 8) << 4
        self.flash_ich_strap_base_addr = get_bits(self.descriptor_map1, 16, 8) << 4
        self.flash_mch_strap_base_addr = get_bits(self.descriptor_map2, 0, 8) << 4

    def _encode_descriptor_maps(self) -> Tuple[int, int, int]:
        if self.num_regions == SPI_NUM_REGIONS_DEFAULT:
            num_regions = 0
        elif 0 < self.num_regions < 8:
            num_regions = self.num_regions
        else:
            raise InternalError(f'region count {self.num_regions:d} cannot be encoded')
        map0 = set_bits(self.descriptor_map0, 0, 8, self.flash_component_base_addr >> 4)
        map0 = set_bits(map0, 8, 2, self.num_components)
        map0 = set_bits(map0, 16, 8, self.flash_region_base_addr >> 4)
        map0 = set_bits(map0, 24, 3, num_regions)
        map1 = set_bits(self.descriptor_map1, 0, 8, self.flash_master_base_addr >> 4)
        map1 = set_bits(map1, 16, 8, self.flash_ich_strap_base_addr >> 4)
        map2 = set_bits(self.descriptor_map2, 0, 8, self.flash_mch_strap_base_addr >> 4)
        return (map0, map1, map2)

    ##################################################################################
    # Parsing
    ##################################################################################

    @classmethod
    def validate(cls, buf: memoryview, offset: int) -> None:
        check_size(buf, offset)
        SPI_FDBAR.validate(buf, offset)

    def search(self, buf: memoryview, offset: int) -> int:
        check_size(buf, offset)
        signature = SPI_FLASH_DESCRIPTOR_SIGNATURE.to_bytes(4, 'little')
        pos = bytes(buf[offset + SPI_FDBAR_SIGNATURE_OFFSET:]).find(signature)
        if pos == -1:
            raise InvalidDataError(f'no flash descriptor signature found after 0x{offset:x}')
        return offset + pos

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        st = SPI_FDBAR.unpack(buf)
        if st['reserved'] != SPI_FLASH_DESCRIPTOR_RESERVED:
            for i, val in enumerate(st['reserved']):
                if val != 0xFF:
                    raise InternalError(f'reserved section invalid @0x{i:x}')
        self.descriptor_map0 = st['descriptor_map0']
        self.descriptor_map1 = st['descriptor_map1']
        self.descriptor_map2 = st['descriptor_map2']
        self._decode_descriptor_maps()
        logger().log_debug(f'[spi] FLMAP0=0x{self.descriptor_map0:08X} FLMAP1=0x{self.descriptor_map1:08X} '
                           f'FLMAP2=0x{self.descriptor_map2:08X}')

        st_fcba = SPI_FCBA.unpack(buf, self.flash_component_base_addr)
        self.components_rcd = st_fcba['flcomp']
        self.illegal_jedec = st_fcba['flill']
        self.illegal_jedec1 = st_fcba['flill1']

        st_fmba = SPI_FMBA.unpack(buf, self.flash_master_base_addr)
        self.flash_master = [0, st_fmba['flmstr1'], st_fmba['flmstr2'], st_fmba['flmstr3']]

        self.flash_descriptor_regs = []
        for i in range(self.num_regions):
            self.flash_descriptor_regs.append(SPI_FLREG.get(buf, 'flreg', self.flash_region_base_addr + i * 4))

        for i, flreg in enumerate(self.flash_descriptor_regs):
            base, limit = get_SPI_region(flreg)
            if base > limit:
                logger().log_debug(f'[spi] {region_name(i)} region not used')
                continue
            logger().log_debug(f'[spi] {region_name(i)} region 0x{base:08X}-0x{limit:08X}')
            if limit >= len(buf):
                raise InvalidDataError(f'{region_id(i)} region 0x{base:x}-0x{limit:x} '
                                       f'exceeds image size 0x{len(buf):x}')
            img = IfdBios(config=self.config) if i == BIOS else IfdImage(config=self.config)
            img.id = region_id(i)
            img.idx = i
            try:
                img.parse(buf[base:limit + 1], 0, flags | ParseFlags.NO_SEARCH)
            except FirmwareError as err:
                err.prefix(f'failed to parse {region_id(i)} region: ')
                raise
            img.offset = base
            for master in SPI_MASTER_NAMES:
                img.set_access(master, get_SPI_master_access(self.flash_master[master], i, self.is_skylake))
            self.add_image(img)

    ##################################################################################
    # Writing
    ##################################################################################

    def _write(self) -> bytes:
        blobs: Dict[int, Tuple[Firmware, bytes]] = {}
        bufsz = SPI_FLASH_DESCRIPTOR_SIZE
        for img in self._images:
            if img.idx >= self.num_regions:
                raise InternalError(f'region index {img.idx:d} exceeds region count {self.num_regions:d}')
            if img.offset & (BOUNDARY_4KB - 1):
                raise InternalError(f'{region_id(img.idx)} region base 0x{img.offset:x} is not 4 KiB aligned')
            blob = img.write()
            blobs[img.idx] = (img, blob)
            bufsz = max(bufsz, img.offset + len(blob))

        buf = bytearray(b'\xFF' * bufsz)
        for img, blob in blobs.values():
            buf[img.offset:img.offset + len(blob)] = blob

        # descriptor tables go over the region payloads
        map0, map1, map2 = self._encode_descriptor_maps()
        buf[0:SPI_FDBAR.size] = SPI_FDBAR.pack({
            'reserved': SPI_FLASH_DESCRIPTOR_RESERVED,
            'descriptor_map0': map0,
            'descriptor_map1': map1,
            'descriptor_map2': map2,
        })
        SPI_FCBA.set(buf, 'flcomp', self.components_rcd, self.flash_component_base_addr)
        SPI_FCBA.set(buf, 'flill', self.illegal_jedec, self.flash_component_base_addr)
        SPI_FCBA.set(buf, 'flill1', self.illegal_jedec1, self.flash_component_base_addr)
        SPI_FMBA.set(buf, 'flmstr1', self.flash_master[1], self.flash_master_base_addr)
        SPI_FMBA.set(buf, 'flmstr2', self.flash_master[2], self.flash_master_base_addr)
        SPI_FMBA.set(buf, 'flmstr3', self.flash_master[3], self.flash_master_base_addr)
        for i in range(self.num_regions):
            if i in blobs:
                img, blob = blobs[i]
                flreg = make_SPI_region(img.offset, img.offset + len(blob) - 1)
            else:
                flreg = SPI_FREGx_NOT_USED
            SPI_FLREG.set(buf, 'flreg', flreg, self.flash_region_base_addr + i * 4)
        return bytes(buf)

    ##################################################################################
    # Export / build
    ##################################################################################

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        map0, map1, map2 = self._encode_descriptor_maps()
        node['is_skylake'] = str(self.is_skylake).lower()
        node['descriptor_map0'] = f'0x{map0:x}'
        node['descriptor_map1'] = f'0x{map1:x}'
        node['descriptor_map2'] = f'0x{map2:x}'
        node['components_rcd'] = f'0x{self.components_rcd:x}'
        node['illegal_jedec'] = f'0x{(self.illegal_jedec1 << 32) | self.illegal_jedec:x}'
        for master in SPI_MASTER_NAMES:
            node[f'flash_master{master:d}'] = f'0x{self.flash_master[master]:x}'
        if flags & ExportFlags.INCLUDE_DEBUG:
            node['num_regions'] = f'0x{self.num_regions:x}'
            node['num_components'] = f'0x{self.num_components + 1:x}'
            node['flash_region_base_addr'] = f'0x{self.flash_region_base_addr:x}'
            node['flash_component_base_addr'] = f'0x{self.flash_component_base_addr:x}'
            node['flash_master_base_addr'] = f'0x{self.flash_master_base_addr:x}'
            node['flash_ich_strap_base_addr'] = f'0x{self.flash_ich_strap_base_addr:x}'
            node['flash_mch_strap_base_addr'] = f'0x{self.flash_mch_strap_base_addr:x}'

    def _build(self, node: Dict[str, Any]) -> None:
        if 'is_skylake' in node:
            self.is_skylake = parse_bool(node['is_skylake'])
        if 'descriptor_map0' in node or 'descriptor_map1' in node or 'descriptor_map2' in node:
            map0, map1, map2 = self._encode_descriptor_maps()
            self.descriptor_map0 = parse_int(node.get('descriptor_map0', map0), 'descriptor_map0')
            self.descriptor_map1 = parse_int(node.get('descriptor_map1', map1), 'descriptor_map1')
            self.descriptor_map2 = parse_int(node.get('descriptor_map2', map2), 'descriptor_map2')
            self._decode_descriptor_maps()
        if 'components_rcd' in node:
            self.components_rcd = parse_int(node['components_rcd'], 'components_rcd')
        if 'illegal_jedec' in node:
            illegal_jedec = parse_int(node['illegal_jedec'], 'illegal_jedec')
            self.illegal_jedec = get_bits(illegal_jedec, 0, 32)
            self.illegal_jedec1 = get_bits(illegal_jedec, 32, 32)
        for master in SPI_MASTER_NAMES:
            key = f'flash_master{master:d}'
            if key in node:
                self.flash_master[master] = parse_int(node[key], key)

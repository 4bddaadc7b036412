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
Intel SPI flash descriptor definitions
"""

from enum import IntFlag
from typing import Dict, Tuple

from firmcodec.library.bits import get_bits
from firmcodec.library.structs import BYTES, Struct, U32

SPI_FREGx_LIMIT_MASK = 0x7FFF0000  # Limit
SPI_FREGx_BASE_MASK = 0x00007FFF  # Base
SPI_FLA_SHIFT = 12
SPI_FLA_PAGE_MASK = 0xFFF

# register value of a region that is not present
SPI_FREGx_NOT_USED = SPI_FREGx_BASE_MASK

#
# Flash Regions
#

FLASH_DESCRIPTOR = 0
BIOS = 1
ME = 2
GBE = 3
PLATFORM_DATA = 4
DEVICE_EXPANSION = 5
BIOS2 = 6
EMBEDDED_CONTROLLER = 8
INNOVATION_ENGINE = 9
GBE_10 = 10

SPI_REGION_NAMES: Dict[int, str] = {
    FLASH_DESCRIPTOR: 'Flash Descriptor',
    BIOS: 'BIOS',
    ME: 'Intel ME',
    GBE: 'GBe',
    PLATFORM_DATA: 'Platform Data',
    DEVICE_EXPANSION: 'Device Expansion',
    BIOS2: 'Secondary BIOS',
    EMBEDDED_CONTROLLER: 'Embedded Controller',
    INNOVATION_ENGINE: 'Innovation Engine',
    GBE_10: '10GbE'
}

# short identifiers used as image ids
SPI_REGION_IDS: Dict[int, str] = {
    FLASH_DESCRIPTOR: 'desc',
    BIOS: 'bios',
    ME: 'me',
    GBE: 'gbe',
    PLATFORM_DATA: 'platform',
    DEVICE_EXPANSION: 'devexp',
    BIOS2: 'bios2',
    EMBEDDED_CONTROLLER: 'ec',
    INNOVATION_ENGINE: 'ie',
    GBE_10: '10gbe'
}


def region_id(region: int) -> str:
    return SPI_REGION_IDS.get(region, f'freg{region:d}')


def region_name(region: int) -> str:
    return SPI_REGION_NAMES.get(region, f'Flash Region {region:d}')


#
# Flash Descriptor Master Defines
#

MASTER_HOST_CPU_BIOS = 1
MASTER_ME = 2
MASTER_GBE = 3

SPI_MASTER_NAMES: Dict[int, str] = {
    MASTER_HOST_CPU_BIOS: 'bios',
    MASTER_ME: 'me',
    MASTER_GBE: 'gbe'
}


class IfdAccess(IntFlag):
    NONE = 0
    READ = 0x1
    WRITE = 0x2

    def __str__(self) -> str:
        return ('r' if self & IfdAccess.READ else '') + ('w' if self & IfdAccess.WRITE else '')

    @classmethod
    def from_string(cls, text: str) -> 'IfdAccess':
        if text.strip('rw') or len(set(text)) != len(text):
            raise ValueError(f'invalid access "{text}"')
        access = cls.NONE
        if 'r' in text:
            access |= cls.READ
        if 'w' in text:
            access |= cls.WRITE
        return access


# read and write bit of each region in a pre-Skylake master register
SPI_MASTER_LEGACY_ACCESS_BITS: Dict[int, Tuple[int, int]] = {
    FLASH_DESCRIPTOR: (16, 24),
    BIOS: (17, 25),
    ME: (18, 26),
    GBE: (19, 27)
}
SPI_MASTER_READ_SHIFT = 8
SPI_MASTER_WRITE_SHIFT = 20

#
# Flash Descriptor layout
#

SPI_FLASH_DESCRIPTOR_SIGNATURE = 0x0FF0A55A
SPI_FLASH_DESCRIPTOR_SIZE = 0x1000
SPI_FLASH_DESCRIPTOR_RESERVED = b'\xFF' * 16
SPI_NUM_REGIONS_DEFAULT = 10

SPI_FDBAR = Struct('IfdFdbar', [
    BYTES('reserved', 0x00, 16),
    U32('signature', 0x10, const=SPI_FLASH_DESCRIPTOR_SIGNATURE),
    U32('descriptor_map0', 0x14),
    U32('descriptor_map1', 0x18),
    U32('descriptor_map2', 0x1C),
])
SPI_FCBA = Struct('IfdFcba', [
    U32('flcomp', 0x00),
    U32('flill', 0x04),
    U32('flill1', 0x08),
])
SPI_FMBA = Struct('IfdFmba', [
    U32('flmstr1', 0x00),
    U32('flmstr2', 0x04),
    U32('flmstr3', 0x08),
])
SPI_FLREG = Struct('IfdFlreg', [
    U32('flreg', 0x00),
])


def get_SPI_region(flreg: int) -> Tuple[int, int]:
    range_base = (flreg & SPI_FREGx_BASE_MASK) << SPI_FLA_SHIFT
    range_limit = ((flreg & SPI_FREGx_LIMIT_MASK) >> 4)
    range_limit |= SPI_FLA_PAGE_MASK
    return (range_base, range_limit)


def make_SPI_region(base: int, limit: int) -> int:
    return (((limit >> SPI_FLA_SHIFT) << 16) & SPI_FREGx_LIMIT_MASK) | ((base >> SPI_FLA_SHIFT) & SPI_FREGx_BASE_MASK)


def get_SPI_master_access(flmstr: int, region: int, is_skylake: bool = True) -> IfdAccess:
    if is_skylake:
        bit_r = region + SPI_MASTER_READ_SHIFT
        bit_w = region + SPI_MASTER_WRITE_SHIFT
    elif region in SPI_MASTER_LEGACY_ACCESS_BITS:
        bit_r, bit_w = SPI_MASTER_LEGACY_ACCESS_BITS[region]
    else:
        return IfdAccess.NONE
    access = IfdAccess.NONE
    if get_bits(flmstr, bit_r, 1):
        access |= IfdAccess.READ
    if get_bits(flmstr, bit_w, 1):
        access |= IfdAccess.WRITE
    return access

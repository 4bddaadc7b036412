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

from typing import Optional

BOUNDARY_4KB = 0x1000


def make_mask(size: int, mask_start: Optional[int] = 0) -> int:
    mask = (1 << size) - 1
    mask <<= mask_start
    return mask


def is_set(val: int, bit_mask: int) -> bool:
    return bool(val & bit_mask != 0)


def get_bits(value: int, start: int, nbits: int) -> int:
    ret = value >> start
    ret &= (1 << nbits) - 1
    return ret


def set_bits(value: int, start: int, nbits: int, field: int) -> int:
    mask = make_mask(nbits, start)
    return (value & ~mask) | ((field << start) & mask)


def align_up(value: int, alignment: int) -> int:
    """Rounds value up to a multiple of alignment (a power of two)."""
    if alignment <= 1:
        return value
    return (value + alignment - 1) & ~(alignment - 1)


def padding_size(value: int, alignment: int) -> int:
    return align_up(value, alignment) - value

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
Declarative little-endian structure layouts.

A Struct lists named fields at fixed byte offsets. Fields may carry a
constant that must match on unpack, which makes the layout usable as a
magic sniffer through validate().
"""

from collections import namedtuple
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from firmcodec.library.exceptions import InternalError, InvalidDataError


KIND_INT = 'int'
KIND_BYTES = 'bytes'
KIND_GUID = 'guid'

StructField = namedtuple('StructField', ['name', 'offset', 'size', 'kind', 'endian', 'const'],
                         defaults=(KIND_INT, '<', None))


def U8(name: str, offset: int, const: Optional[int] = None) -> StructField:
    return StructField(name, offset, 1, KIND_INT, '<', const)


def U16(name: str, offset: int, const: Optional[int] = None) -> StructField:
    return StructField(name, offset, 2, KIND_INT, '<', const)


def U24(name: str, offset: int, const: Optional[int] = None) -> StructField:
    return StructField(name, offset, 3, KIND_INT, '<', const)


def U32(name: str, offset: int, const: Optional[int] = None) -> StructField:
    return StructField(name, offset, 4, KIND_INT, '<', const)


def U64(name: str, offset: int, const: Optional[int] = None) -> StructField:
    return StructField(name, offset, 8, KIND_INT, '<', const)


def GUID(name: str, offset: int, const: Optional[UUID] = None) -> StructField:
    return StructField(name, offset, 16, KIND_GUID, '<', const)


def BYTES(name: str, offset: int, size: int, const: Optional[bytes] = None) -> StructField:
    return StructField(name, offset, size, KIND_BYTES, '<', const)


def _format_value(value: Any) -> str:
    if isinstance(value, int):
        return f'0x{value:x}'
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return str(value)


class Struct:
    def __init__(self, name: str, fields: Iterable[StructField]) -> None:
        self.name = name
        self.fields: Dict[str, StructField] = {}
        for fld in fields:
            self.fields[fld.name] = fld
        self.size = max(fld.offset + fld.size for fld in self.fields.values())

    def __str__(self) -> str:
        return f'{self.name} (0x{self.size:x} bytes)'

    def _field(self, name: str) -> StructField:
        try:
            return self.fields[name]
        except KeyError:
            raise InternalError(f'{self.name} has no field {name}')

    def _check_bounds(self, buf, offset: int, length: int) -> None:
        if offset < 0 or offset + length > len(buf):
            raise InvalidDataError(f'{self.name} requires 0x{length:x} bytes at offset 0x{offset:x}, '
                                   f'buffer size is 0x{len(buf):x}')

    def _decode(self, fld: StructField, buf, offset: int) -> Any:
        start = offset + fld.offset
        raw = bytes(buf[start:start + fld.size])
        if fld.kind == KIND_INT:
            return int.from_bytes(raw, 'little' if fld.endian == '<' else 'big')
        if fld.kind == KIND_GUID:
            return UUID(bytes_le=raw)
        return raw

    def _encode(self, fld: StructField, value: Any) -> bytes:
        if fld.kind == KIND_INT:
            if value < 0 or value >> (fld.size * 8):
                raise InternalError(f'{self.name}.{fld.name} value 0x{value:x} does not fit in {fld.size} bytes')
            return value.to_bytes(fld.size, 'little' if fld.endian == '<' else 'big')
        if fld.kind == KIND_GUID:
            if isinstance(value, str):
                value = UUID(value)
            return value.bytes_le
        value = bytes(value)
        if len(value) != fld.size:
            raise InternalError(f'{self.name}.{fld.name} requires {fld.size} bytes, got {len(value)}')
        return value

    def _check_const(self, fld: StructField, value: Any) -> None:
        if fld.const is not None and value != fld.const:
            raise InvalidDataError(f'constant {self.name}.{fld.name} was not valid, '
                                   f'expected {_format_value(fld.const)} and got {_format_value(value)}')

    def unpack(self, buf, offset: int = 0) -> Dict[str, Any]:
        self._check_bounds(buf, offset, self.size)
        values = {}
        for fld in self.fields.values():
            value = self._decode(fld, buf, offset)
            self._check_const(fld, value)
            values[fld.name] = value
        return values

    def validate(self, buf, offset: int = 0) -> None:
        """Checks length and constant fields only."""
        self._check_bounds(buf, offset, self.size)
        for fld in self.fields.values():
            if fld.const is not None:
                self._check_const(fld, self._decode(fld, buf, offset))

    def pack(self, values: Optional[Dict[str, Any]] = None) -> bytearray:
        values = values or {}
        for name in values:
            self._field(name)
        buf = bytearray(self.size)
        for fld in self.fields.values():
            if fld.name in values:
                value = values[fld.name]
            elif fld.const is not None:
                value = fld.const
            else:
                continue
            buf[fld.offset:fld.offset + fld.size] = self._encode(fld, value)
        return buf

    def get(self, buf, name: str, offset: int = 0) -> Any:
        fld = self._field(name)
        self._check_bounds(buf, offset + fld.offset, fld.size)
        return self._decode(fld, buf, offset)

    def set(self, buf: bytearray, name: str, value: Any, offset: int = 0) -> None:
        fld = self._field(name)
        self._check_bounds(buf, offset + fld.offset, fld.size)
        start = offset + fld.offset
        buf[start:start + fld.size] = self._encode(fld, value)

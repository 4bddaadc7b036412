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
Generic firmware node

Every container codec derives from Firmware. A node holds either opaque
bytes or an ordered list of child images; when children exist they are
the source of the serialized payload.
"""

import base64
import binascii
import xml.etree.ElementTree as ET
from enum import IntFlag
from typing import Any, Dict, List, Optional, Type

from firmcodec.library.bits import padding_size
from firmcodec.library.exceptions import FirmwareError, InternalError, InvalidDataError, InvalidFileError, NotSupportedError
from firmcodec.library.options import ParseConfig

# maximum alignment exponent accepted from a built tree (2 GiB)
FIRMWARE_ALIGNMENT_MAX = 31


class ParseFlags(IntFlag):
    NONE = 0
    IGNORE_CHECKSUM = 0x1
    NO_SEARCH = 0x2


class ExportFlags(IntFlag):
    NONE = 0
    INCLUDE_DEBUG = 0x1
    HEX_DATA = 0x2


FIRMWARE_TYPES: Dict[str, Type['Firmware']] = {}


def to_buffer(data: Any) -> memoryview:
    """Returns a byte-oriented view over bytes, bytearray, memoryview or a binary stream."""
    if hasattr(data, 'read'):
        data = data.read()
    try:
        buf = memoryview(data)
    except TypeError:
        raise InternalError(f'cannot parse object of type {type(data).__name__}')
    if buf.format != 'B' or buf.ndim != 1:
        buf = buf.cast('B')
    return buf


def parse_int(value: Any, name: str = 'value') -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip(), 0)
    except ValueError:
        raise InvalidDataError(f'{name} is not an integer: {value}')


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes')


class Firmware:
    """A node of the firmware tree."""

    def __init__(self, config: Optional[ParseConfig] = None) -> None:
        self.config = config if config is not None else ParseConfig()
        self.id: Optional[str] = None
        self.idx = 0
        self.offset = 0
        self.size = 0
        self.alignment = 0
        self.version: Optional[str] = None
        self.version_raw = 0
        self._bytes: Optional[bytes] = None
        self._images: List['Firmware'] = []

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        FIRMWARE_TYPES[cls.__name__] = cls

    def __str__(self) -> str:
        return '\n'.join(self._str_lines(0))

    def _str_lines(self, depth: int) -> List[str]:
        line = f'{"  " * depth}{self.__class__.__name__}'
        if self.id is not None:
            line += f' {self.id}'
        line += f' offset=0x{self.offset:X} size=0x{self.size:X}'
        extra = self._str_extra()
        if extra:
            line += f' {extra}'
        lines = [line]
        for img in self._images:
            lines.extend(img._str_lines(depth + 1))
        return lines

    def _str_extra(self) -> str:
        return ''

    ##################################################################################
    # Payload
    ##################################################################################

    def get_images_max(self) -> int:
        """Maximum number of children, 0 for unlimited."""
        return 0

    def add_image(self, img: 'Firmware') -> None:
        images_max = self.get_images_max()
        if images_max and len(self._images) >= images_max:
            raise InvalidFileError(f'too many images, limit is {images_max}')
        self._images.append(img)

    def get_images(self) -> List['Firmware']:
        return list(self._images)

    def get_image_by_id(self, id: str) -> Optional['Firmware']:
        for img in self._images:
            if img.id == id:
                return img
        return None

    def get_image_by_idx(self, idx: int) -> Optional['Firmware']:
        for img in self._images:
            if img.idx == idx:
                return img
        return None

    def get_bytes(self) -> Optional[bytes]:
        return self._bytes

    def set_bytes(self, data: Optional[bytes]) -> None:
        self._bytes = bytes(data) if data is not None else None

    ##################################################################################
    # Parsing
    ##################################################################################

    @classmethod
    def validate(cls, buf: memoryview, offset: int) -> None:
        """Raises FirmwareError when the magic at offset does not match."""
        pass

    @classmethod
    def check_magic(cls, data: Any, offset: int = 0) -> bool:
        try:
            cls.validate(to_buffer(data), offset)
        except FirmwareError:
            return False
        return True

    def search(self, buf: memoryview, offset: int) -> int:
        """Returns the offset of the next header at or after offset."""
        return offset

    def parse(self, data: Any, offset: int = 0, flags: ParseFlags = ParseFlags.NONE,
              config: Optional[ParseConfig] = None) -> 'Firmware':
        buf = to_buffer(data)
        if config is not None:
            self.config = config
        if offset < 0 or offset > len(buf):
            raise InvalidDataError(f'offset 0x{offset:x} is outside of buffer of size 0x{len(buf):x}')
        if not flags & ParseFlags.NO_SEARCH:
            offset = self.search(buf, offset)
        self.validate(buf, offset)
        self.offset = offset
        self.size = len(buf) - offset
        self._parse(buf[offset:], flags)
        return self

    def _parse(self, buf: memoryview, flags: ParseFlags) -> None:
        self.set_bytes(buf)

    ##################################################################################
    # Writing
    ##################################################################################

    def write(self) -> bytes:
        return self._write()

    def _write(self) -> bytes:
        return self.write_payload()

    def write_payload(self) -> bytes:
        if self._images:
            return self.write_images()
        if self._bytes is None:
            raise InternalError(f'no payload set for {self.__class__.__name__}')
        return self._bytes

    def write_images(self) -> bytes:
        buf = bytearray()
        for img in self._images:
            img.offset = len(buf)
            buf += img.write()
            buf += b'\xFF' * padding_size(len(buf), 1 << img.alignment)
        return bytes(buf)

    ##################################################################################
    # Export / build
    ##################################################################################

    def export(self, flags: ExportFlags = ExportFlags.NONE) -> Dict[str, Any]:
        node: Dict[str, Any] = {'gtype': self.__class__.__name__}
        if self.id is not None:
            node['id'] = self.id
        if self.idx:
            node['idx'] = f'0x{self.idx:x}'
        if self.version is not None:
            node['version'] = self.version
        if self.version_raw:
            node['version_raw'] = f'0x{self.version_raw:x}'
        if self.offset:
            node['offset'] = f'0x{self.offset:x}'
        if self.size:
            node['size'] = f'0x{self.size:x}'
        if self.alignment:
            node['alignment'] = f'0x{self.alignment:x}'
        self._export(node, flags)
        if self._images:
            node['images'] = [img.export(flags) for img in self._images]
        elif self._bytes is not None:
            if flags & ExportFlags.HEX_DATA:
                node['data_hex'] = self._bytes.hex()
            else:
                node['data'] = base64.b64encode(self._bytes).decode('ascii')
        return node

    def _export(self, node: Dict[str, Any], flags: ExportFlags) -> None:
        pass

    def export_to_xml(self, flags: ExportFlags = ExportFlags.NONE) -> str:
        root = _node_to_element(self.export(flags))
        ET.indent(root)
        return ET.tostring(root, encoding='unicode')

    @classmethod
    def build(cls, node: Dict[str, Any]) -> 'Firmware':
        gtype = node.get('gtype', cls.__name__)
        try:
            klass = FIRMWARE_TYPES[gtype]
        except KeyError:
            raise NotSupportedError(f'unknown firmware type {gtype}')
        firmware = klass()
        firmware._build_base(node)
        firmware._build(node)
        for child in node.get('images', []):
            firmware.add_image(Firmware.build(child))
        return firmware

    @classmethod
    def build_from_xml(cls, xml: str) -> 'Firmware':
        try:
            root = ET.fromstring(xml)
        except ET.ParseError as err:
            raise InvalidDataError(f'failed to parse XML: {err}')
        if root.tag != 'firmware':
            raise InvalidDataError(f'expected <firmware> element, got <{root.tag}>')
        return cls.build(_element_to_node(root))

    def _build_base(self, node: Dict[str, Any]) -> None:
        if 'id' in node:
            self.id = node['id']
        if 'idx' in node:
            self.idx = parse_int(node['idx'], 'idx')
        if 'version' in node:
            self.version = node['version']
        if 'version_raw' in node:
            self.version_raw = parse_int(node['version_raw'], 'version_raw')
        if 'offset' in node:
            self.offset = parse_int(node['offset'], 'offset')
        if 'size' in node:
            self.size = parse_int(node['size'], 'size')
        if 'alignment' in node:
            alignment = parse_int(node['alignment'], 'alignment')
            if alignment > FIRMWARE_ALIGNMENT_MAX:
                raise InvalidDataError(f'alignment invalid, got 0x{alignment:x}')
            self.alignment = alignment
        if 'data' in node:
            try:
                self.set_bytes(base64.b64decode(node['data'], validate=True))
            except binascii.Error as err:
                raise InvalidDataError(f'data is not valid base64: {err}')
        elif 'data_hex' in node:
            try:
                self.set_bytes(bytes.fromhex(node['data_hex']))
            except ValueError as err:
                raise InvalidDataError(f'data_hex is not valid hex: {err}')

    def _build(self, node: Dict[str, Any]) -> None:
        pass


FIRMWARE_TYPES['Firmware'] = Firmware


def _node_to_element(node: Dict[str, Any]) -> ET.Element:
    elem = ET.Element('firmware')
    for key, value in node.items():
        if key == 'gtype':
            elem.set('gtype', value)
        elif key == 'images':
            for child in value:
                elem.append(_node_to_element(child))
        else:
            ET.SubElement(elem, key).text = str(value)
    return elem


def _element_to_node(elem: ET.Element) -> Dict[str, Any]:
    node: Dict[str, Any] = {}
    gtype = elem.get('gtype')
    if gtype:
        node['gtype'] = gtype
    images = []
    for sub in elem:
        if sub.tag == 'firmware':
            images.append(_element_to_node(sub))
        else:
            node[sub.tag] = sub.text or ''
    if images:
        node['images'] = images
    return node

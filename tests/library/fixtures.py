# CHIPSEC: Platform Security Assessment Framework
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
#

"""Hand-crafted firmware images used by the codec tests."""

import struct
from uuid import UUID

FFS2_GUID = UUID('8C8CE578-8A3D-4F1C-9935-896185C32DD3')
NVRAM_GUID = UUID('FFF12B8D-7696-4C8B-A985-2747075B4F50')
VOLUME_GUID = UUID('5C60F367-A505-419A-859E-2A4FF6CA6FE5')
FILE_GUID = UUID('7F1FDF94-4C5E-4C3F-A3B9-5B0A8E6A36B4')
FILE2_GUID = UUID('1B45CC0A-156A-428A-AF62-49864DA0E6E6')
LZMA_GUID = UUID('EE4E5898-3914-4259-9D6E-DC7BD79403CF')
CRC32_GUID = UUID('FC1BCDB0-7D31-49AA-936A-A4600D9DD083')
TIANO_GUID = UUID('A31280AD-481E-41B6-95E8-127F4C984779')
LZMAF86_GUID = UUID('D42AE6BD-1352-4BFB-909A-CA72A6EAE889')
UNKNOWN_GUID = UUID('2A6A0C46-5E45-4A2B-B1F2-D17C2C4E5D31')

IFD_SIGNATURE = 0x0FF0A55A
FLMSTR_DEFAULT = (0x00A00F00, 0x00400D00, 0x00800900)


def pad(data: bytes, alignment: int, fill: int = 0xFF) -> bytes:
    return data + bytes([fill]) * (-len(data) % alignment)


def checksum8(data: bytes) -> int:
    return (0x100 - (sum(data) & 0xFF)) & 0xFF


def checksum16(data: bytes) -> int:
    words = struct.unpack(f'<{len(data) // 2}H', data)
    return (0x10000 - (sum(words) & 0xFFFF)) & 0xFFFF


def make_section(section_type: int, body: bytes) -> bytes:
    return struct.pack('<I', (4 + len(body)) | (section_type << 24)) + body


def make_section2(section_type: int, body: bytes) -> bytes:
    return struct.pack('<II', 0xFFFFFF | (section_type << 24), 8 + len(body)) + body


def make_guid_section(guid: UUID, body: bytes, attrs: int = 0, preamble: bytes = b'') -> bytes:
    hdr_len = 4 + 0x14 + len(preamble)
    return (struct.pack('<I', (hdr_len + len(body)) | (0x02 << 24)) + guid.bytes_le +
            struct.pack('<HH', hdr_len, attrs) + preamble + body)


def make_compression_section(body: bytes, compression_type: int = 0, uncompressed_length: int = -1) -> bytes:
    if uncompressed_length < 0:
        uncompressed_length = len(body)
    return make_section(0x01, struct.pack('<IB', uncompressed_length, compression_type) + body)


def make_lz77(body: bytes, orig_size: int) -> bytes:
    return struct.pack('<II', len(body), orig_size) + body


class FakeEfiCompressor:
    """Stands in for uefi_firmware.efi_compressor: an LZ77 header around stored data."""

    @staticmethod
    def EfiCompress(data, size):
        return make_lz77(data, size)

    @staticmethod
    def TianoCompress(data, size):
        return make_lz77(data, size)

    @staticmethod
    def EfiDecompress(data, size):
        return data[8:]

    @staticmethod
    def TianoDecompress(data, size):
        return data[8:]


def make_ui_section(text: str) -> bytes:
    return make_section(0x15, text.encode('utf-16-le') + b'\x00\x00')


def make_sections(*sections: bytes) -> bytes:
    return b''.join(pad(section, 4) for section in sections)


def make_file(guid: UUID, file_type: int, body: bytes, attrib: int = 0, state: int = 0xF8) -> bytes:
    size = 0x18 + len(body)
    hdr = bytearray(guid.bytes_le)
    hdr += struct.pack('<BBBB', 0, checksum8(body), file_type, attrib)
    hdr += size.to_bytes(3, 'little') + bytes([state])
    hdr[0x10] = checksum8(bytes(hdr[:0x10]) + bytes(hdr[0x12:0x17]))
    return bytes(hdr) + body


def make_volume(body: bytes, guid: UUID = FFS2_GUID, length: int = 0, revision: int = 2,
                attrs: int = 0xFEFF, alignment: int = 0, num_blocks: int = -1, ext_hdr: int = 0) -> bytes:
    hdr_len = 0x48
    if not length:
        length = hdr_len + len(body)
    if num_blocks < 0:
        num_blocks = (length + 0xFFF) // 0x1000
    hdr = bytearray(16) + guid.bytes_le
    hdr += struct.pack('<QIIHHHBB', length, 0x4856465F, attrs | (alignment << 16), hdr_len, 0, ext_hdr, 0, revision)
    hdr += struct.pack('<IIII', num_blocks, 0x1000, 0, 0)
    struct.pack_into('<H', hdr, 0x32, checksum16(bytes(hdr)))
    return bytes(hdr) + body + b'\xFF' * (length - hdr_len - len(body))


def make_filesystem(*files: bytes) -> bytes:
    return b''.join(pad(f, 8) for f in files)


def make_ifd(regions: dict, size: int = 0, num_regions: int = 0, flmstr: tuple = FLMSTR_DEFAULT,
             flill: int = 0, flill1: int = 0, flcomp: int = 0) -> bytes:
    """Builds a flash image, regions maps a region index to (base, data)."""
    frba = 0x40
    fcba = 0x30
    fmba = 0x80
    regions = dict(regions)
    regions.setdefault(0, (0, b'\xFF' * 0x1000))
    if not size:
        size = max(base + len(data) for base, data in regions.values())
    buf = bytearray(b'\xFF' * size)
    for base, data in regions.values():
        buf[base:base + len(data)] = data

    map0 = (fcba >> 4) | (((frba >> 4)) << 16) | (num_regions << 24)
    map1 = (fmba >> 4) | ((0x100 >> 4) << 16)
    map2 = 0x300 >> 4
    buf[0:16] = b'\xFF' * 16
    struct.pack_into('<IIII', buf, 0x10, IFD_SIGNATURE, map0, map1, map2)
    struct.pack_into('<III', buf, fcba, flcomp, flill, flill1)
    struct.pack_into('<III', buf, fmba, *flmstr)
    for i in range(num_regions or 10):
        if i in regions:
            base, data = regions[i]
            limit = base + len(data) - 1
            flreg = ((limit >> 12) << 16) | (base >> 12)
        else:
            flreg = 0x00007FFF
        struct.pack_into('<I', buf, frba + i * 4, flreg)
    return bytes(buf)


def make_ffs_volume(length: int = 0x1000) -> bytes:
    fs = make_filesystem(make_file(FILE_GUID, 0x0B, make_sections(make_section(0x19, b'raw'))))
    return make_volume(fs, length=length)

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
Common UEFI firmware volume, FFS file and section definitions
"""

import struct
from typing import Dict, Optional
from uuid import UUID

from firmcodec.library.exceptions import InvalidDataError
from firmcodec.library.structs import BYTES, GUID, Struct, U8, U16, U24, U32, U64

################################################################################################
#
# EFI Firmware Volume Defines
#
################################################################################################

EFI_FVH_SIGNATURE = 0x4856465F   # '_FVH'
EFI_FVH_REVISION = 0x02
EFI_FVB2_ERASE_POLARITY = 0x00000800
EFI_FVB2_DEFAULT_ATTRIBUTES = 0xFEFF
EFI_FVB2_ALIGNMENT_SHIFT = 16
EFI_FVB2_ALIGNMENT_2G = 0x1F
EFI_FVB2_ALIGNMENT_1M = 0x14
EFI_FV_BLOCK_SIZE = 0x1000
EFI_FV_EXT_TYPE_END = 0xFFFF

EFI_FIRMWARE_VOLUME_HEADER = Struct('EfiVolumeHeader', [
    BYTES('zero_vector', 0x00, 16),
    GUID('guid', 0x10),
    U64('length', 0x20),
    U32('signature', 0x28, const=EFI_FVH_SIGNATURE),
    U32('attrs', 0x2C),
    U16('hdr_len', 0x30),
    U16('checksum', 0x32),
    U16('ext_hdr', 0x34),
    U8('reserved', 0x36),
    U8('revision', 0x37),
])
EFI_FV_BLOCK_MAP_ENTRY = Struct('EfiVolumeBlockMap', [
    U32('num_blocks', 0x00),
    U32('length', 0x04),
])
EFI_FIRMWARE_VOLUME_EXT_HEADER = Struct('EfiVolumeExtHeader', [
    GUID('fv_name', 0x00),
    U32('size', 0x10),
])
EFI_FIRMWARE_VOLUME_EXT_ENTRY = Struct('EfiVolumeExtEntry', [
    U16('size', 0x00),
    U16('type', 0x02),
])

# header, one block map entry and the terminating entry
EFI_FV_HEADER_WRITE_SIZE = EFI_FIRMWARE_VOLUME_HEADER.size + 2 * EFI_FV_BLOCK_MAP_ENTRY.size

EFI_FIRMWARE_FILE_SYSTEM_GUID = UUID('7A9354D9-0468-444A-81CE-0BF617D890DF')
EFI_FIRMWARE_FILE_SYSTEM2_GUID = UUID('8C8CE578-8A3D-4F1C-9935-896185C32DD3')
EFI_FIRMWARE_FILE_SYSTEM3_GUID = UUID('5473C07A-3DCB-4DCA-BD6F-1E9689E7349A')
EFI_SYSTEM_NV_DATA_FV_GUID = UUID('FFF12B8D-7696-4C8B-A985-2747075B4F50')
EFI_FFS_VOLUME_TOP_FILE_GUID = UUID('1BA0062E-C779-4582-8566-336AE8F78F09')

EFI_FS_GUIDS = [EFI_FIRMWARE_FILE_SYSTEM2_GUID, EFI_FIRMWARE_FILE_SYSTEM3_GUID]

################################################################################################
#
# EFI FFS File Defines
#
################################################################################################

FFS_ATTRIB_LARGE_FILE = 0x01
FFS_ATTRIB_FIXED = 0x04
FFS_ATTRIB_DATA_ALIGNMENT = 0x38
FFS_ATTRIB_CHECKSUM = 0x40

EFI_FILE_STATE_DEFAULT = 0xF8

FFS_FILE_ALIGNMENT = 3          # files start on 8 byte boundaries
FFS_FILE_SIZE_MAX = 0xFFFFFF

EFI_FV_FILETYPE_RAW = 0x01
EFI_FV_FILETYPE_FREEFORM = 0x02
EFI_FV_FILETYPE_FIRMWARE_VOLUME_IMAGE = 0x0B
EFI_FV_FILETYPE_FFS_PAD = 0xF0

FILE_TYPE_NAMES = {
    0x00: 'FV_ALL',
    0x01: 'FV_RAW',
    0x02: 'FV_FREEFORM',
    0x03: 'FV_SECURITY_CORE',
    0x04: 'FV_PEI_CORE',
    0x05: 'FV_DXE_CORE',
    0x06: 'FV_PEIM',
    0x07: 'FV_DRIVER',
    0x08: 'FV_COMBINED_PEIM_DRIVER',
    0x09: 'FV_APPLICATION',
    0x0A: 'FV_MM',
    0x0B: 'FV_FVIMAGE',
    0x0C: 'FV_COMBINED_MM_DXE',
    0x0D: 'FV_MM_CORE',
    0x0E: 'FV_MM_STANDALONE',
    0x0F: 'FV_MM_CORE_STANDALONE',
    0xF0: 'FV_FFS_PAD'
}

EFI_FFS_FILE_HEADER = Struct('EfiFileHeader', [
    GUID('name', 0x00),
    U8('hdr_checksum', 0x10),
    U8('data_checksum', 0x11),
    U8('type', 0x12),
    U8('attrs', 0x13),
    U24('size', 0x14),
    U8('state', 0x17),
])
EFI_FFS_FILE_HEADER2 = Struct('EfiFileHeader2', list(EFI_FFS_FILE_HEADER.fields.values()) + [
    U64('extended_size', 0x18),
])

################################################################################################
#
# EFI Section Defines
#
################################################################################################

EFI_SECTION_COMPRESSION = 0x01
EFI_SECTION_GUID_DEFINED = 0x02
EFI_SECTION_PE32 = 0x10
EFI_SECTION_PIC = 0x11
EFI_SECTION_TE = 0x12
EFI_SECTION_DXE_DEPEX = 0x13
EFI_SECTION_VERSION = 0x14
EFI_SECTION_USER_INTERFACE = 0x15
EFI_SECTION_COMPATIBILITY16 = 0x16
EFI_SECTION_FIRMWARE_VOLUME_IMAGE = 0x17
EFI_SECTION_FREEFORM_SUBTYPE_GUID = 0x18
EFI_SECTION_RAW = 0x19
EFI_SECTION_PEI_DEPEX = 0x1B
EFI_SECTION_MM_DEPEX = 0x1C

SECTION_NAMES = {
    0x01: 'S_COMPRESSION',
    0x02: 'S_GUID_DEFINED',
    0x10: 'S_PE32',
    0x11: 'S_PIC',
    0x12: 'S_TE',
    0x13: 'S_DXE_DEPEX',
    0x14: 'S_VERSION',
    0x15: 'S_USER_INTERFACE',
    0x16: 'S_COMPATIBILITY16',
    0x17: 'S_FV_IMAGE',
    0x18: 'S_FREEFORM_SUBTYPE_GUID',
    0x19: 'S_RAW',
    0x1B: 'S_PEI_DEPEX',
    0x1C: 'S_MM_DEPEX'
}

EFI_SECTION_OPAQUE_TYPES = [EFI_SECTION_PE32, EFI_SECTION_PIC, EFI_SECTION_TE, EFI_SECTION_DXE_DEPEX,
                            EFI_SECTION_COMPATIBILITY16, EFI_SECTION_RAW, EFI_SECTION_PEI_DEPEX, EFI_SECTION_MM_DEPEX]

EFI_SECTION_SIZE_EXTENDED = 0xFFFFFF
EFI_SECTION_ALIGNMENT = 2       # sections start on 4 byte boundaries

EFI_COMMON_SECTION_HEADER = Struct('EfiSectionHeader', [
    U24('size', 0x00),
    U8('type', 0x03),
])
EFI_COMMON_SECTION_HEADER2 = Struct('EfiSectionHeader2', [
    U24('size', 0x00, const=EFI_SECTION_SIZE_EXTENDED),
    U8('type', 0x03),
    U32('extended_size', 0x04),
])
EFI_GUID_DEFINED_SECTION = Struct('EfiSectionGuidDefined', [
    GUID('name', 0x00),
    U16('offset', 0x10),
    U16('attrs', 0x12),
])
EFI_COMPRESSION_SECTION = Struct('EfiSectionCompression', [
    U32('uncompressed_length', 0x00),
    U8('compression_type', 0x04),
])

EFI_VERSION_SECTION = Struct('EfiSectionVersion', [
    U16('build_number', 0x00),
])
EFI_FREEFORM_SUBTYPE_GUID_SECTION = Struct('EfiSectionFreeformSubtype', [
    GUID('sub_type_guid', 0x00),
])

EFI_GUIDED_SECTION_PROCESSING_REQUIRED = 0x01
EFI_GUIDED_SECTION_AUTH_STATUS_VALID = 0x02

EFI_NOT_COMPRESSED = 0x00
EFI_STANDARD_COMPRESSION = 0x01

LZMA_CUSTOM_DECOMPRESS_GUID = UUID('EE4E5898-3914-4259-9D6E-DC7BD79403CF')
LZMAF86_DECOMPRESS_GUID = UUID('D42AE6BD-1352-4BFB-909A-CA72A6EAE889')
TIANO_DECOMPRESSED_GUID = UUID('A31280AD-481E-41B6-95E8-127F4C984779')
EFI_CRC32_GUIDED_SECTION_EXTRACTION_PROTOCOL_GUID = UUID('FC1BCDB0-7D31-49AA-936A-A4600D9DD083')
EFI_SELF_TEST_GUID = UUID('CED4EAC6-49F3-4C12-A597-FC8C33447691')
EFI_CRC32_SIZE = 4

EFI_GUID_NAMES: Dict[UUID, str] = {
    EFI_FIRMWARE_FILE_SYSTEM_GUID: 'EFI_FIRMWARE_FILE_SYSTEM',
    EFI_FIRMWARE_FILE_SYSTEM2_GUID: 'EFI_FIRMWARE_FILE_SYSTEM2',
    EFI_FIRMWARE_FILE_SYSTEM3_GUID: 'EFI_FIRMWARE_FILE_SYSTEM3',
    EFI_SYSTEM_NV_DATA_FV_GUID: 'EFI_SYSTEM_NV_DATA_FV',
    EFI_FFS_VOLUME_TOP_FILE_GUID: 'EFI_FFS_VOLUME_TOP_FILE',
    LZMA_CUSTOM_DECOMPRESS_GUID: 'LZMA_CUSTOM_DECOMPRESS',
    LZMAF86_DECOMPRESS_GUID: 'LZMAF86_CUSTOM_DECOMPRESS',
    TIANO_DECOMPRESSED_GUID: 'TIANO_CUSTOM_DECOMPRESS',
    EFI_CRC32_GUIDED_SECTION_EXTRACTION_PROTOCOL_GUID: 'EFI_CRC32_GUIDED_SECTION_EXTRACTION',
    EFI_SELF_TEST_GUID: 'EFI_SELF_TEST',
}

# vendor payloads carried in freeform subtype GUID sections
FREEFORM_SUBTYPE_GUID_NAMES: Dict[UUID, str] = {
    UUID('00781CA1-5DE3-405F-ABB8-379C3C076984'): 'AmiRomLayoutGuid',
    UUID('20FEEBDE-E739-420E-AE31-77E2876508C0'): 'IntelRstOprom',
    UUID('224D6EB4-307F-45BA-9DC3-FE9FC6B38148'): 'IntelEntRaidController',
    UUID('2EBE0275-6458-4AF9-91ED-D3F4EDB100AA'): 'SignOn',
    UUID('380B6B4F-1454-41F2-A6D3-61D1333E8CB4'): 'IntelGop',
    UUID('50339D20-C90A-4BB2-9AFF-D8A11B23BC15'): 'I219?Oprom',
    UUID('88A15A4F-977D-4682-B17C-DA1F316C1F32'): 'RomLayout',
    UUID('9BEC7109-6D7A-413A-8E4B-019CED0503E1'): 'AmiBoardInfoSectionGuid',
    UUID('AB56DC60-0057-11DA-A8DB-000102EEE626'): '?BuildData',
    UUID('C5A4306E-E247-4ECD-A9D8-5B1985D3DCDA'): '?Oprom',
    UUID('C9352CC3-A354-44E5-8776-B2ED8DD781EC'): 'IntelEntRaidController',
    UUID('D46346CA-82A1-4CDE-9546-77C86F893888'): '?Oprom',
    UUID('E095AFFE-D4CD-4289-9B48-28F64E3D781D'): 'IntelRstOprom',
    UUID('FE612B72-203C-47B1-8560-A66D946EB371'): 'setupdata',
}


def guid_to_name(guid: UUID) -> Optional[str]:
    return EFI_GUID_NAMES.get(guid)


def guid_str(guid: UUID) -> str:
    return str(guid).lower()


################################################################################################
#
# Checksums and strings
#
################################################################################################

def FvSum8(buffer) -> int:
    return sum(bytes(buffer)) & 0xFF


def FvChecksum8(buffer) -> int:
    return (0x100 - FvSum8(buffer)) & 0xFF


def FvSum16(buffer) -> int:
    data = bytes(buffer)
    count = len(data) // 2
    return sum(struct.unpack_from(f'<{count}H', data)) & 0xFFFF


def FvChecksum16(buffer) -> int:
    return (0x10000 - FvSum16(buffer)) & 0xFFFF


def decode_utf16(buffer) -> str:
    """Decodes a NUL terminated UTF-16LE string."""
    data = bytes(buffer)
    if len(data) % 2:
        data = data[:-1]
    for i in range(0, len(data), 2):
        if data[i:i + 2] == b'\x00\x00':
            data = data[:i]
            break
    try:
        return data.decode('utf-16-le')
    except UnicodeDecodeError as err:
        raise InvalidDataError(f'failed to convert UTF-16 string: {err}')


def encode_utf16(text: str) -> bytes:
    return text.encode('utf-16-le') + b'\x00\x00'

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
UEFI compression support

LZMA sections use the lzma module. EFI standard and Tiano compression use
the efi_compressor extension shipped with uefi_firmware, installed through
the 'compression' extra.
"""

import struct
from typing import Callable, List

from firmcodec.library.exceptions import InvalidDataError, InvalidFileError, NotSupportedError
from firmcodec.library.logger import logger


def show_import_error(import_name: str) -> None:
    logger().log_debug(f'Failed to import compression module "{import_name}"')


try:
    import lzma

    has_lzma = True
except ImportError as exception:
    has_lzma = False

    show_import_error(exception.name)

try:
    from uefi_firmware import efi_compressor

    has_efi_compressor = True
except ImportError as exception:
    has_efi_compressor = False

    show_import_error(exception.name)

COMPRESSION_TYPE_NONE = 0
COMPRESSION_TYPE_EFI_STANDARD = 1
COMPRESSION_TYPE_TIANO = 2
COMPRESSION_TYPE_LZMA = 3

# LZMA 'alone' header: properties byte, dictionary size, 64-bit uncompressed size
LZMA_HEADER_SIZE_OFFSET = 0x5
LZMA_HEADER_SIZE = 0xD
LZMA_SIZE_UNKNOWN = 0xFFFFFFFFFFFFFFFF

# EFI/Tiano header: 32-bit compressed size, 32-bit original size
LZ77_HEADER_SIZE = 0x8


class UefiCompression:
    """ UEFI Compression """

    def decompress_efi_binary(self, compressed_data: bytes, compression_type: int, size: int = 0,
                              max_length: int = 0) -> bytes:
        """
        Decompresses data, checking the result against size when it is non-zero.

        A non-zero max_length bounds the decompressed output; larger results
        raise InvalidFileError before the whole output is produced.
        """
        compressed_data = bytes(compressed_data)
        if max_length and size > max_length:
            raise InvalidFileError(f'decompressed size 0x{size:x} exceeds limit 0x{max_length:x}')
        if compression_type == COMPRESSION_TYPE_NONE:
            data = compressed_data
        elif compression_type == COMPRESSION_TYPE_LZMA:
            data = self._decompress_lzma(compressed_data, max_length)
        elif compression_type == COMPRESSION_TYPE_EFI_STANDARD:
            # the section header does not say which LZ77 variant was used
            data = self._decompress_lz77(compressed_data, ['EfiDecompress', 'TianoDecompress'], max_length)
        elif compression_type == COMPRESSION_TYPE_TIANO:
            data = self._decompress_lz77(compressed_data, ['TianoDecompress', 'EfiDecompress'], max_length)
        else:
            raise NotSupportedError(f'Unknown EFI compression type 0x{compression_type:X}')
        if size and len(data) != size:
            raise InvalidDataError(f'decompressed size 0x{len(data):x} does not match expected 0x{size:x}')
        return data

    def compress_efi_binary(self, uncompressed_data: bytes, compression_type: int) -> bytes:
        uncompressed_data = bytes(uncompressed_data)
        if compression_type == COMPRESSION_TYPE_NONE:
            return uncompressed_data
        if compression_type == COMPRESSION_TYPE_LZMA:
            if not has_lzma:
                raise NotSupportedError('LZMA compression requires the lzma module')
            data = lzma.compress(uncompressed_data, format=lzma.FORMAT_ALONE)
            # header carries the uncompressed size in place of the unknown marker
            return (data[:LZMA_HEADER_SIZE_OFFSET] + struct.pack('<Q', len(uncompressed_data)) +
                    data[LZMA_HEADER_SIZE:])
        if compression_type in (COMPRESSION_TYPE_EFI_STANDARD, COMPRESSION_TYPE_TIANO):
            name = 'EfiCompress' if compression_type == COMPRESSION_TYPE_EFI_STANDARD else 'TianoCompress'
            compressor = self._get_efi_compressor(name)
            return bytes(compressor(uncompressed_data, len(uncompressed_data)))
        raise NotSupportedError(f'Unknown EFI compression type 0x{compression_type:X}')

    def _decompress_lzma(self, compressed_data: bytes, max_length: int = 0) -> bytes:
        if not has_lzma:
            raise NotSupportedError('LZMA decompression requires the lzma module')
        if len(compressed_data) >= LZMA_HEADER_SIZE and max_length:
            declared = struct.unpack_from('<Q', compressed_data, LZMA_HEADER_SIZE_OFFSET)[0]
            if declared != LZMA_SIZE_UNKNOWN and declared > max_length:
                raise InvalidFileError(f'LZMA decompressed size 0x{declared:x} exceeds limit 0x{max_length:x}')
        try:
            return self._lzma_decompress_bounded(compressed_data, max_length)
        except lzma.LZMAError as error:
            logger().log_debug(f'Cannot decompress LZMA data: {error}')
        # If lzma fails, patch the size within the header
        # https://github.com/python/cpython/issues/92018
        try:
            return self._lzma_decompress_bounded(compressed_data[:LZMA_HEADER_SIZE_OFFSET] + b'\xFF' * 0x8 +
                                                 compressed_data[LZMA_HEADER_SIZE:], max_length)
        except lzma.LZMAError as error:
            raise InvalidDataError(f'Cannot decompress LZMA data: {error}')

    def _lzma_decompress_bounded(self, compressed_data: bytes, max_length: int) -> bytes:
        decompressor = lzma.LZMADecompressor(format=lzma.FORMAT_ALONE)
        data = decompressor.decompress(compressed_data, max_length + 1 if max_length else -1)
        if max_length and len(data) > max_length:
            raise InvalidFileError(f'LZMA decompressed data exceeds limit 0x{max_length:x}')
        if not decompressor.eof:
            raise lzma.LZMAError('Compressed data ended before the end-of-stream marker was reached')
        return data

    def _decompress_lz77(self, compressed_data: bytes, names: List[str], max_length: int = 0) -> bytes:
        if len(compressed_data) < LZ77_HEADER_SIZE:
            raise InvalidDataError(f'LZ77 data too small, got 0x{len(compressed_data):x}')
        orig_size = struct.unpack_from('<I', compressed_data, 0x4)[0]
        if max_length and orig_size > max_length:
            raise InvalidFileError(f'LZ77 decompressed size 0x{orig_size:x} exceeds limit 0x{max_length:x}')
        for name in names:
            decompressor = self._get_efi_compressor(name)
            try:
                data = decompressor(compressed_data, len(compressed_data))
            except Exception as error:
                logger().log_debug(f'Cannot decompress data with {name}: {error}')
                continue
            if data:
                return bytes(data)
        raise InvalidDataError('Cannot decompress LZ77 data')

    def _get_efi_compressor(self, name: str) -> Callable:
        if not has_efi_compressor:
            raise NotSupportedError(f'{name} requires the uefi_firmware package')
        return getattr(efi_compressor, name)

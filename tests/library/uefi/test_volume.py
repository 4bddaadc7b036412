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

import struct
import unittest

from firmcodec.library.exceptions import InternalError, InvalidDataError, InvalidFileError
from firmcodec.library.firmware import ExportFlags, Firmware, ParseFlags
from firmcodec.library.options import ParseConfig
from firmcodec.library.uefi.filesystem import EfiFilesystem
from firmcodec.library.uefi.uefi_common import FvSum16
from firmcodec.library.uefi.volume import EfiVolume
from tests.library.fixtures import FILE_GUID, NVRAM_GUID, VOLUME_GUID, make_ffs_volume, make_volume


class TestEfiVolume(unittest.TestCase):

    def test_header_only(self):
        data = make_volume(b'', guid=VOLUME_GUID)
        self.assertEqual(len(data), 0x48)
        fv = EfiVolume().parse(data)
        self.assertEqual(fv.offset, 0)
        self.assertEqual(fv.size, 0x48)
        self.assertEqual(fv.id, str(VOLUME_GUID))
        self.assertEqual(fv.get_images(), [])
        self.assertEqual(fv.get_bytes(), b'')
        self.assertEqual(fv.blockmap, [(1, 0x1000)])

    def test_revision_invalid(self):
        with self.assertRaisesRegex(InternalError, 'revision invalid'):
            EfiVolume().parse(make_volume(b'', revision=1))

    def test_checksum_invalid(self):
        data = bytearray(make_volume(b'', guid=VOLUME_GUID))
        data[0x2C] ^= 0x01
        with self.assertRaisesRegex(InvalidFileError, 'checksum invalid'):
            EfiVolume().parse(data)
        fv = EfiVolume().parse(data, flags=ParseFlags.IGNORE_CHECKSUM)
        self.assertEqual(fv.attrs, 0xFEFE)

    def test_length_zero(self):
        data = bytearray(make_volume(b''))
        data[0x20:0x28] = b'\x00' * 8
        with self.assertRaisesRegex(InternalError, 'invalid volume length'):
            EfiVolume().parse(data)

    def test_length_limit(self):
        with self.assertRaises(InvalidFileError):
            EfiVolume(config=ParseConfig(volume_size_max=0x800)).parse(make_ffs_volume())

    def test_length_truncated(self):
        with self.assertRaisesRegex(InvalidDataError, 'failed to cut EFI volume'):
            EfiVolume().parse(make_ffs_volume()[:0x200])

    def test_header_length_invalid(self):
        data = bytearray(make_volume(b''))
        struct.pack_into('<H', data, 0x30, 0x10)
        with self.assertRaisesRegex(InternalError, 'invalid volume header length 0x10'):
            EfiVolume().parse(data)

    def test_alignment_invalid(self):
        with self.assertRaisesRegex(InvalidDataError, 'alignment invalid'):
            EfiVolume().parse(make_volume(b'', alignment=0x20))

    def test_blockmap_too_small(self):
        with self.assertRaisesRegex(InternalError, 'blocks allocated is less than volume length'):
            EfiVolume().parse(make_volume(b'', num_blocks=0))

    def test_search(self):
        data = b'\x00' * 0x20 + make_volume(b'', guid=VOLUME_GUID)
        fv = EfiVolume().parse(data)
        self.assertEqual(fv.offset, 0x20)
        with self.assertRaises(InvalidDataError):
            EfiVolume().parse(data, flags=ParseFlags.NO_SEARCH)
        with self.assertRaises(InvalidDataError):
            EfiVolume().parse(b'\x00' * 0x100)

    def test_check_magic(self):
        self.assertTrue(EfiVolume.check_magic(make_volume(b'')))
        self.assertFalse(EfiVolume.check_magic(b'\x00' * 0x48))
        self.assertFalse(EfiVolume.check_magic(b'_FVH'))

    def test_filesystem(self):
        data = make_ffs_volume()
        fv = EfiVolume().parse(data)
        fs = fv.get_images()[0]
        self.assertIsInstance(fs, EfiFilesystem)
        self.assertEqual(fs.offset, 0x48)
        f = fs.get_images()[0]
        self.assertEqual(f.id, str(FILE_GUID))
        self.assertEqual(f.get_images()[0].get_bytes(), b'raw')
        self.assertEqual(fv.write(), data)

    def test_filesystem_error_prefix(self):
        data = bytearray(make_ffs_volume())
        data[0x48 + 0x10] ^= 0xFF
        with self.assertRaisesRegex(InvalidFileError, r'^failed to parse EFI filesystem of volume \{.*\}: '
                                                      r'failed to parse EFI file at 0x0: checksum invalid'):
            EfiVolume().parse(data)

    def test_nvram_opaque(self):
        data = make_volume(b'\x01\x02\x03\x04', guid=NVRAM_GUID, length=0x100)
        fv = EfiVolume().parse(data)
        self.assertEqual(fv.get_images(), [])
        self.assertEqual(fv.get_bytes()[:4], b'\x01\x02\x03\x04')
        self.assertEqual(fv.write(), data)

    def test_ext_header(self):
        ext = VOLUME_GUID.bytes_le + struct.pack('<I', 0x14) + struct.pack('<HH', 0xFFFF, 0)
        data = make_volume(ext, guid=NVRAM_GUID, length=0x80, ext_hdr=0x48)
        fv = EfiVolume().parse(data)
        self.assertEqual(fv.ext_hdr_offset, 0)
        self.assertEqual(fv.write(), data)

    def test_ext_header_entry_invalid(self):
        ext = VOLUME_GUID.bytes_le + struct.pack('<I', 0x14) + struct.pack('<HH', 0, 0)
        with self.assertRaisesRegex(InvalidDataError, 'EFI_VOLUME_EXT_ENTRY invalid size'):
            EfiVolume().parse(make_volume(ext, guid=NVRAM_GUID, length=0x80, ext_hdr=0x48))

    def test_write(self):
        fv = EfiVolume()
        fv.id = str(VOLUME_GUID)
        fv.alignment = 4
        fv.set_bytes(b'\x00' * 3)
        data = fv.write()
        self.assertEqual(len(data), 0x50)
        self.assertEqual(FvSum16(data[:0x48]), 0)
        fv2 = EfiVolume().parse(data)
        self.assertEqual(fv2.alignment, 4)
        self.assertEqual(fv2.blockmap, [(1, 0x1000)])
        self.assertEqual(fv2.get_bytes(), b'\x00' * 3 + b'\xFF' * 5)

    def test_write_child_offset(self):
        fv = EfiVolume().parse(make_ffs_volume())
        node = fv.export()
        self.assertEqual(fv.get_images()[0].offset, 0x48)
        fv.write()
        self.assertEqual(fv.get_images()[0].offset, 0x48)
        self.assertEqual(fv.export(), node)

    def test_write_alignment_invalid(self):
        fv = EfiVolume()
        fv.id = str(VOLUME_GUID)
        fv.alignment = 21
        fv.set_bytes(b'')
        with self.assertRaisesRegex(InvalidFileError, 'alignment invalid'):
            fv.write()

    def test_write_no_guid(self):
        fv = EfiVolume()
        fv.set_bytes(b'')
        with self.assertRaises(InternalError):
            fv.write()

    def test_export_build(self):
        data = make_ffs_volume()
        fv = EfiVolume().parse(data)
        node = fv.export(ExportFlags.INCLUDE_DEBUG)
        self.assertEqual(node['gtype'], 'EfiVolume')
        self.assertEqual(node['guid_name'], 'EFI_FIRMWARE_FILE_SYSTEM2')
        self.assertEqual(node['images'][0]['gtype'], 'EfiFilesystem')
        self.assertEqual(Firmware.build(node).write(), data)

    def test_xml_round_trip(self):
        data = make_ffs_volume()
        xml = EfiVolume().parse(data).export_to_xml()
        self.assertEqual(Firmware.build_from_xml(xml).write(), data)

    def test_str(self):
        text = str(EfiVolume().parse(make_ffs_volume()))
        self.assertIn('[EFI_FIRMWARE_FILE_SYSTEM2]', text)
        self.assertIn('  EfiFilesystem', text)


if __name__ == '__main__':
    unittest.main()

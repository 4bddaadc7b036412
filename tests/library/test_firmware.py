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

import io
import unittest

from firmcodec.library.exceptions import (FirmwareError, InternalError, InvalidDataError, InvalidFileError,
                                          NotSupportedError)
from firmcodec.library.firmware import ExportFlags, Firmware, to_buffer
from firmcodec.library.options import ParseConfig


class TestFirmware(unittest.TestCase):

    def test_parse_bytes(self):
        fw = Firmware().parse(b'\x01\x02\x03', 1)
        self.assertEqual(fw.offset, 1)
        self.assertEqual(fw.size, 2)
        self.assertEqual(fw.get_bytes(), b'\x02\x03')
        self.assertEqual(fw.write(), b'\x02\x03')

    def test_parse_stream(self):
        fw = Firmware().parse(io.BytesIO(b'\xAA\xBB'))
        self.assertEqual(fw.get_bytes(), b'\xAA\xBB')

    def test_parse_offset_outside(self):
        with self.assertRaises(InvalidDataError):
            Firmware().parse(b'\x00', 2)

    def test_to_buffer_invalid(self):
        with self.assertRaises(InternalError):
            to_buffer(42)

    def test_write_without_payload(self):
        with self.assertRaises(InternalError):
            Firmware().write()

    def test_images_limit(self):
        class Limited(Firmware):
            def get_images_max(self):
                return 2

        fw = Limited()
        fw.add_image(Firmware())
        fw.add_image(Firmware())
        with self.assertRaisesRegex(InvalidFileError, 'too many images, limit is 2'):
            fw.add_image(Firmware())

    def test_get_image(self):
        fw = Firmware()
        child = Firmware()
        child.id = 'child'
        child.idx = 3
        fw.add_image(child)
        self.assertIs(fw.get_image_by_id('child'), child)
        self.assertIs(fw.get_image_by_idx(3), child)
        self.assertIsNone(fw.get_image_by_id('other'))
        self.assertEqual(fw.get_images(), [child])

    def test_write_images_alignment(self):
        fw = Firmware()
        for data in (b'\x01', b'\x02\x02\x02'):
            child = Firmware()
            child.alignment = 2
            child.set_bytes(data)
            fw.add_image(child)
        self.assertEqual(fw.write(), b'\x01\xFF\xFF\xFF\x02\x02\x02\xFF')
        self.assertEqual(fw.get_images()[1].offset, 4)

    def test_export_build(self):
        fw = Firmware()
        fw.id = 'parent'
        child = Firmware()
        child.set_bytes(b'\xDE\xAD')
        fw.add_image(child)
        node = fw.export()
        self.assertEqual(node['gtype'], 'Firmware')
        self.assertEqual(node['images'][0]['data'], '3q0=')
        fw2 = Firmware.build(node)
        self.assertEqual(fw2.id, 'parent')
        self.assertEqual(fw2.write(), b'\xDE\xAD')

    def test_export_hex(self):
        fw = Firmware()
        fw.set_bytes(b'\xDE\xAD')
        self.assertEqual(fw.export(ExportFlags.HEX_DATA)['data_hex'], 'dead')

    def test_xml(self):
        fw = Firmware()
        fw.id = 'parent'
        fw.offset = 0x10
        fw.set_bytes(b'\x01\x02')
        xml = fw.export_to_xml()
        self.assertIn('<firmware gtype="Firmware">', xml)
        fw2 = Firmware.build_from_xml(xml)
        self.assertEqual(fw2.id, 'parent')
        self.assertEqual(fw2.offset, 0x10)
        self.assertEqual(fw2.get_bytes(), b'\x01\x02')

    def test_xml_invalid(self):
        with self.assertRaises(InvalidDataError):
            Firmware.build_from_xml('<firmware>')
        with self.assertRaises(InvalidDataError):
            Firmware.build_from_xml('<image/>')

    def test_build_unknown_gtype(self):
        with self.assertRaises(NotSupportedError):
            Firmware.build({'gtype': 'NoSuchFirmware'})

    def test_build_invalid(self):
        with self.assertRaises(InvalidDataError):
            Firmware.build({'alignment': '0x20'})
        with self.assertRaises(InvalidDataError):
            Firmware.build({'data': '!!!'})
        with self.assertRaises(InvalidDataError):
            Firmware.build({'offset': 'zero'})

    def test_str(self):
        fw = Firmware()
        fw.id = 'parent'
        fw.add_image(Firmware())
        self.assertEqual(str(fw), 'Firmware parent offset=0x0 size=0x0\n  Firmware offset=0x0 size=0x0')

    def test_config_propagates(self):
        config = ParseConfig(section_images_max=1)
        fw = Firmware().parse(b'\x00', config=config)
        self.assertIs(fw.config, config)


class TestFirmwareError(unittest.TestCase):

    def test_prefix(self):
        err = InvalidDataError('bad')
        err.prefix('inner: ')
        err.prefix('outer: ')
        self.assertEqual(str(err), 'outer: inner: bad')
        self.assertIsInstance(err, FirmwareError)


if __name__ == '__main__':
    unittest.main()

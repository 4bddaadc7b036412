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

import unittest
from uuid import UUID

from firmcodec.library.exceptions import InternalError, InvalidDataError
from firmcodec.library.structs import BYTES, GUID, U8, U16, U24, U32, U64, Struct

TEST_GUID = UUID('8C8CE578-8A3D-4F1C-9935-896185C32DD3')

TEST_STRUCT = Struct('TestStruct', [
    U32('magic', 0x00, const=0x4856465F),
    U8('u8', 0x04),
    U16('u16', 0x05),
    U24('u24', 0x07),
    U64('u64', 0x0A),
    GUID('guid', 0x12),
    BYTES('blob', 0x22, 2),
])


class TestStructs(unittest.TestCase):

    def test_size(self):
        self.assertEqual(TEST_STRUCT.size, 0x24)

    def test_unpack(self):
        buf = (b'_FVH' + b'\x01' + b'\x02\x03' + b'\x04\x05\x06' + b'\x07' * 8 + TEST_GUID.bytes_le + b'\xAA\xBB')
        st = TEST_STRUCT.unpack(buf)
        self.assertEqual(st['magic'], 0x4856465F)
        self.assertEqual(st['u8'], 0x01)
        self.assertEqual(st['u16'], 0x0302)
        self.assertEqual(st['u24'], 0x060504)
        self.assertEqual(st['u64'], 0x0707070707070707)
        self.assertEqual(st['guid'], TEST_GUID)
        self.assertEqual(st['blob'], b'\xAA\xBB')

    def test_unpack_at_offset(self):
        buf = b'\x00' * 3 + TEST_STRUCT.pack({'u24': 0x123456})
        self.assertEqual(TEST_STRUCT.unpack(buf, 3)['u24'], 0x123456)

    def test_unpack_too_small(self):
        with self.assertRaises(InvalidDataError):
            TEST_STRUCT.unpack(b'_FVH')

    def test_unpack_constant_invalid(self):
        buf = bytearray(TEST_STRUCT.pack())
        buf[0] = 0
        with self.assertRaisesRegex(InvalidDataError, 'constant TestStruct.magic was not valid'):
            TEST_STRUCT.unpack(buf)

    def test_validate(self):
        buf = TEST_STRUCT.pack()
        TEST_STRUCT.validate(buf)
        with self.assertRaises(InvalidDataError):
            TEST_STRUCT.validate(b'\x00' * TEST_STRUCT.size)

    def test_pack_fills_constants(self):
        buf = TEST_STRUCT.pack({'u16': 0x1234, 'guid': str(TEST_GUID)})
        self.assertEqual(len(buf), TEST_STRUCT.size)
        self.assertEqual(buf[0:4], b'_FVH')
        self.assertEqual(buf[5:7], b'\x34\x12')
        self.assertEqual(bytes(buf[0x12:0x22]), TEST_GUID.bytes_le)

    def test_pack_overflow(self):
        with self.assertRaises(InternalError):
            TEST_STRUCT.pack({'u24': 0x1000000})

    def test_pack_unknown_field(self):
        with self.assertRaises(InternalError):
            TEST_STRUCT.pack({'missing': 1})

    def test_get_set(self):
        buf = bytearray(TEST_STRUCT.pack())
        TEST_STRUCT.set(buf, 'u8', 0x7F)
        self.assertEqual(TEST_STRUCT.get(buf, 'u8'), 0x7F)
        with self.assertRaises(InvalidDataError):
            TEST_STRUCT.get(buf, 'blob', 0x10)


if __name__ == '__main__':
    unittest.main()

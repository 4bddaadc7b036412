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

from firmcodec.library.exceptions import InvalidFileError
from firmcodec.library.options import ParseConfig
from firmcodec.library.uefi.filesystem import EfiFilesystem
from tests.library.fixtures import FILE2_GUID, FILE_GUID, make_file, make_filesystem


class TestEfiFilesystem(unittest.TestCase):

    def _files(self, count):
        return [make_file(FILE_GUID if i % 2 else FILE2_GUID, 0x01, bytes([i])) for i in range(count)]

    def test_parse(self):
        data = make_filesystem(*self._files(2)) + b'\xFF' * 0x18
        fs = EfiFilesystem().parse(data)
        images = fs.get_images()
        self.assertEqual(len(images), 2)
        self.assertEqual([img.offset for img in images], [0, 0x20])
        self.assertEqual(images[1].get_bytes(), b'\x01')

    def test_free_space_stops(self):
        data = make_filesystem(*self._files(1)) + b'\xFF' * 0x18 + b'\x00' * 0x20
        fs = EfiFilesystem().parse(data)
        self.assertEqual(len(fs.get_images()), 1)

    def test_short_tail_ignored(self):
        data = make_filesystem(*self._files(1)) + b'\x00' * 0x10
        self.assertEqual(len(EfiFilesystem().parse(data).get_images()), 1)

    def test_empty(self):
        self.assertEqual(EfiFilesystem().parse(b'\xFF' * 0x100).get_images(), [])

    def test_files_limit(self):
        data = make_filesystem(*self._files(3))
        with self.assertRaisesRegex(InvalidFileError, 'too many images, limit is 2'):
            EfiFilesystem(config=ParseConfig(filesystem_files_max=2)).parse(data)

    def test_error_prefix(self):
        data = bytearray(make_filesystem(*self._files(2)))
        data[0x20 + 0x10] ^= 0xFF
        with self.assertRaisesRegex(InvalidFileError, r'^failed to parse EFI file at 0x20: checksum invalid'):
            EfiFilesystem().parse(data)

    def test_write(self):
        data = make_filesystem(*self._files(3))
        fs = EfiFilesystem().parse(data)
        self.assertEqual(fs.write(), data)
        for img in fs.get_images():
            self.assertEqual(img.offset % 8, 0)

    def test_write_too_large(self):
        fs = EfiFilesystem().parse(make_filesystem(*self._files(2)))
        fs.config = ParseConfig(filesystem_size_max=0x30)
        with self.assertRaisesRegex(InvalidFileError, 'EFI filesystem too large'):
            fs.write()


if __name__ == '__main__':
    unittest.main()

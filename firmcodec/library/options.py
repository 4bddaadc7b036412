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

import os
import configparser
from dataclasses import dataclass, fields
from typing import Any
from firmcodec.library.exceptions import OptionsError


class NoDefault():
    pass


def get_options_dir() -> str:
    return os.path.abspath(os.path.join(os.path.dirname(__file__), os.path.pardir, 'options'))


class Options(object):

    def __init__(self, options_name: str = 'parse_options.ini'):
        options_path = get_options_dir()
        if not os.path.isdir(options_path):
            raise OptionsError(f'Unable to locate configuration options: {options_path}')
        options_name = os.path.join(options_path, options_name)
        self.config = configparser.ConfigParser()
        with open(options_name) as options_file:
            self.config.read_file(options_file)

    def get_section_data(self, section: str, key: str, default: Any = NoDefault) -> str:
        try:
            ret_data = self.config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            if default is NoDefault:
                raise
            return default
        return ret_data

    def get_int_data(self, section: str, key: str, default: Any = NoDefault) -> int:
        ret_data = self.get_section_data(section, key, default)
        if isinstance(ret_data, int):
            return ret_data
        try:
            return int(ret_data, 0)
        except ValueError:
            raise OptionsError(f'Option {section}.{key} is not an integer: {ret_data}')


@dataclass
class ParseConfig:
    """Resource ceilings handed to every parse call."""
    volume_size_max: int = 0x10000000
    volume_images_max: int = 1000
    filesystem_files_max: int = 10000
    filesystem_size_max: int = 0x10000000
    file_size_max: int = 0x10000000
    section_images_max: int = 2000
    bios_volumes_max: int = 1000

    @classmethod
    def from_options(cls, profile: str = 'default', options: Any = None) -> 'ParseConfig':
        if options is None:
            options = Options()
        if not options.config.has_section(profile):
            raise OptionsError(f'Unknown parse profile: {profile}')
        values = {}
        for fld in fields(cls):
            values[fld.name] = options.get_int_data(profile, fld.name, fld.default)
        return cls(**values)

    @classmethod
    def fuzzing(cls) -> 'ParseConfig':
        return cls.from_options('fuzzing')

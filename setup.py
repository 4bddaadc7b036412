#!/usr/bin/env python3
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
Setup module to install firmcodec package via setuptools
"""

import os
from setuptools import setup, find_packages, __version__ as _sutver

if _sutver and int(_sutver.split('.')[0]) < 62:
    raise RuntimeError("Setuptools version must be greater than 62.0.0. Please upgrade using 'pip install setuptools --upgrade'")


def long_description():
    return open('README').read()


def version():
    return open(os.path.join('firmcodec', 'VERSION')).read().strip()


package_data = {
    # Include any configuration file.
    '': ['*.ini'],
    'firmcodec': ['*VERSION*', 'options/*.ini'],
}
install_requires = []
extras_require = {
    # EFI standard and Tiano compressed sections
    'compression': ['uefi_firmware'],
    'test': ['pytest'],
}

setup(
    name='firmcodec',
    version=version(),
    description='Firmware container codec for UEFI firmware volumes and Intel flash descriptors',
    author='CHIPSEC Team',
    author_email='chipsec@intel.com',
    license='GNU General Public License v2 (GPLv2)',
    platforms=['any'],
    long_description=long_description(),

    classifiers=[
        'Development Status :: 4 - Beta',
        'License :: OSI Approved :: GNU General Public License v2 (GPLv2)',
        'Natural Language :: English',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Security',
        'Topic :: System :: Hardware'
    ],

    packages=find_packages(exclude=['tests.*', 'tests']),
    package_data=package_data,
    install_requires=install_requires,
    extras_require=extras_require,
    python_requires='>=3.9',

    test_suite='tests',
)

#!/usr/bin/env python
from setuptools import setup,find_packages

# For Testing:
#
# python3 -m unittest discover -s fat32mk/tests -t .
#
# For Realz:
#
# python3 setup.py bdist_wheel
# python3 -m pip install dist/fat32mk-*.whl

import fat32mk

setup(
    name='fat32mk',
    version='.'.join( str(v) for v in fat32mk.__version__ ),
    description='Blank FAT32 file system image maker',
    license='Apache License 2.0',

    packages=find_packages(exclude=['*.tests','*.tests.*']),

    install_requires=[
        'vstruct2>=2.0.2',
    ],

    entry_points={
        'console_scripts': [
            'fat32mk = fat32mk.tools.mkfat32:_main',
        ],
    },

    classifiers=[
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3',
    ],

)

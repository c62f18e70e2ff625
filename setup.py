#!/usr/bin/env python
from setuptools import setup,find_packages

# For Testing:
#
# python3 -m unittest discover -s fatdissect/tests -t .
#

import fatdissect

setup(
    name='fatdissect',
    version='.'.join( str(v) for v in fatdissect.__version__ ),
    description='FAT12/16/32 Directory Structure Parsers',
    license='Apache License 2.0',

    packages=find_packages(exclude=['*.tests','*.tests.*']),

    install_requires=[
        'vstruct2>=2.0.2',
    ],

    extras_require={
        'test': ['pytest'],
    },

    classifiers=[
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3',
    ],

)

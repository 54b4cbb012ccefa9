#!/usr/bin/env python

from setuptools import setup

setup(
    name='cast2gif',
    version='0.1.0',
    license='BSD 3-clause license',
    description='Render asciicast terminal recordings as animated GIF images',
    long_description='Convert terminal sessions recorded in asciicast v1 or v2 '
                     'format to animated GIF, PNG or SVG files, rasterizing '
                     'frames in parallel.',
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: BSD License',
        'Operating System :: MacOS',
        'Operating System :: POSIX :: BSD',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Multimedia :: Graphics :: Graphics Conversion',
        'Topic :: Terminals'
    ],
    python_requires='>=3.8',
    packages=[
        'cast2gif',
        'cast2gif.tests'
    ],
    package_data={
        'cast2gif': ['data/*.ini'],
    },
    scripts=['scripts/cast2gif'],
    include_package_data=True,
    install_requires=[
        'lxml',
        'Pillow>=10.1',
        'pyte',
        'wcwidth',
    ],
    extras_require={
        'dev': [
            'coverage',
            'pylint',
            'twine',
            'wheel',
        ]
    }
)

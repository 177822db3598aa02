#!/usr/bin/python3
# Setup file for gitwire
# Copyright (C) 2008-2022 Jelmer Vernooĳ <jelmer@jelmer.uk>
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require: list[str] = []


setup(
    name="gitwire",
    version="0.1.0",
    description="Client side of the git smart transfer protocol",
    long_description="""
gitwire speaks the client side of the git smart protocol (versions 0, 1
and 2) over git://, ssh, local subprocesses and smart HTTP. It handles the
capability advertisement, ref listing, the have/ACK negotiation, side-band
demultiplexing and push reporting; producing and indexing packs is left to
the caller.

Every protocol exchange is written once and can be driven either by
blocking code or by asyncio.
""",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.9",
    packages=["gitwire"],
    package_data={"": ["py.typed"]},
    install_requires=["urllib3>=2.2.2", "aiohttp>=3.9"],
    extras_require={
        "test": tests_require,
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)

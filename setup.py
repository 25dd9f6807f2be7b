# SPDX-License-Identifier: LGPL-3.0-or-later
from setuptools import setup, find_packages

setup(
    name="peforge",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[l.strip() for l in open("requirements.txt", encoding="utf-8") if l.strip() and not l.startswith("#")],
    extras_require={
        # python-hivex ships with libguestfs/hivex system packages on most distros
        "hivex": ["hivex"],
        "test": ["pytest"],
    },
    entry_points={"console_scripts": ["peforge=peforge.__main__:main"]},
)

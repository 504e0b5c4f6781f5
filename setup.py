import re

from setuptools import setup

with open("README.rst") as readme:
    long_description = readme.read()

# read the version without importing the package (and its dependencies)
with open("depositor/__init__.py") as init:
    __version__ = re.search(r'__version__ = "([^"]+)"', init.read()).group(1)

setup(
    name="bitcoin-depositor",
    version=__version__,
    description="Taproot deposit builder with a presigned fallback spend",
    long_description=long_description,
    author="The bitcoin-depositor developers",
    license="MIT",
    keywords="bitcoin taproot psbt deposit",
    install_requires=[
        "base58check>=1.0.2,<2.0",
        "coincurve>=20.0.0",
        "embit>=0.8,<1.0",
        "requests>=2.25,<3.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    packages=["depositor"],
    py_modules=["depositor_cli"],
    entry_points={
        "console_scripts": ["depositor=depositor_cli:main"],
    },
    zip_safe=False,
)

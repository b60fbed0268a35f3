#!/usr/bin/env python3

# python setup.py sdist --format=zip,gztar

import sys
import importlib.util

from setuptools import setup, find_packages

MIN_PYTHON_VERSION = "3.8.0"
_min_python_version_tuple = tuple(map(int, (MIN_PYTHON_VERSION.split("."))))


if sys.version_info[:3] < _min_python_version_tuple:
    sys.exit("Error: hwprovision requires Python version >= %s..." % MIN_PYTHON_VERSION)

with open('contrib/requirements/requirements.txt') as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith('#')]

with open('contrib/requirements/requirements-hw.txt') as f:
    requirements_hw = [line for line in f.read().splitlines() if line and not line.startswith('#')]

with open('contrib/requirements/requirements-tests.txt') as f:
    requirements_tests = [line for line in f.read().splitlines() if line and not line.startswith('#')]

# load version.py; needlessly complicated alternative to "imp.load_source":
version_spec = importlib.util.spec_from_file_location('version', 'hwprovision/version.py')
version_module = version = importlib.util.module_from_spec(version_spec)
version_spec.loader.exec_module(version_module)

extras_require = {
    'hardware': requirements_hw,
    'tests': requirements_tests,
}
extras_require['full'] = [pkg for sublist in
                          (extras_require['hardware'],)
                          for pkg in sublist]


setup(
    name="hwprovision",
    version=version.HWPROVISION_VERSION,
    python_requires='>={}'.format(MIN_PYTHON_VERSION),
    install_requires=requirements,
    extras_require=extras_require,
    packages=(['hwprovision',]
              + [('hwprovision.'+pkg) for pkg in
                 find_packages('hwprovision', exclude=["tests"])]),
    package_dir={
        'hwprovision': 'hwprovision'
    },
    scripts=['hwprovision/hwprovision'],
    description="Provision wallets from the root node of a hardware signing device",
    license="MIT Licence",
    long_description="""Provision wallets from the root node of a hardware signing device""",
)

"""Setup module for rcrelay."""

from setuptools import setup
from codecs import open
from os import path

curdir = path.abspath(path.dirname(__file__))

with open(path.join(curdir, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='rcrelay',
    version='0.3.0',

    description='IRC client engine for relaying feeds into chat channels',
    long_description=long_description,
    long_description_content_type='text/markdown',

    # Choose your license
    license='MPL 2.0',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Development Status :: 3 - Alpha',

        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'Topic :: Communications :: Chat :: Internet Relay Chat',
        'License :: OSI Approved :: Mozilla Public License 2.0 (MPL 2.0)',

        'Programming Language :: Python :: 3',
    ],

    keywords='IRC bot relay',
    install_requires=['pyyaml'],
    python_requires='>=3.6',

    # Folders (packages of code)
    packages=['rcrelay', 'rcrelay.protocols', 'rcrelay.coremods'],

    # Data files
    package_data={
        '': ['example-conf.yml'],
    },

    package_dir = {'rcrelay': '.'},

    # Executable scripts
    scripts=["rcrelay"],
)

"""
Search for shared libraries and executables in an ordered list of directories.

The first match wins. Libraries are resolved to the concrete file, so that a versioned
``libfoo.so.1.2.3`` is recorded instead of the ``libfoo.so`` symlink pointing to it.
"""

import logging
import os
import pathlib
import shutil
import sys
import typing


def library_patterns(name: str, *, platform: str = sys.platform) -> tuple[str, ...]:
    """
    Get the file name patterns of the shared library `name`, most specific first.

    >>> from cudart_provision.utils.search import library_patterns
    >>> library_patterns('cudart', platform = 'linux')
    ('libcudart.so', 'libcudart.so.*')
    >>> library_patterns('cudart', platform = 'win32')
    ('cudart64_*.dll', 'cudart.dll')
    """
    if platform == 'win32':
        return (f'{name}64_*.dll', f'{name}.dll')
    if platform == 'darwin':
        return (f'lib{name}.dylib', f'lib{name}.*.dylib')
    return (f'lib{name}.so', f'lib{name}.so.*')

def library_subdirs(*, platform: str = sys.platform) -> tuple[str, ...]:
    """
    Subdirectories of an installation prefix that may hold shared libraries.
    """
    if platform == 'win32':
        return ('bin', 'lib/x64', 'lib')
    return ('lib64', 'lib', 'lib/x64')

def find_library(
    patterns: typing.Iterable[str],
    dirs: typing.Iterable[str | pathlib.Path],
) -> pathlib.Path | None:
    """
    Find the first file in `dirs` matching one of `patterns`.

    Directories are searched in order, and within a directory, patterns are tried in order.
    When a pattern matches several files, the one that sorts last is used (e.g. the highest version).
    """
    patterns = tuple(patterns)
    for directory in map(pathlib.Path, dirs):
        if not directory.is_dir():
            continue
        for pattern in patterns:
            if matches := sorted(x for x in directory.glob(pattern) if x.is_file()):
                found = matches[-1].resolve()
                logging.debug(f'Found {pattern} in {directory}: {found}.')
                return found
    return None

def is_executable(path: pathlib.Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)

def find_binary(
    name: str,
    dirs: typing.Iterable[str | pathlib.Path] = (),
    *,
    use_path: bool = True,
    platform: str = sys.platform,
) -> pathlib.Path | None:
    """
    Find the executable `name` in `dirs`, then in ``PATH`` if `use_path` is set.
    """
    filename = name + '.exe' if platform == 'win32' and not name.endswith('.exe') else name

    for directory in map(pathlib.Path, dirs):
        if is_executable(candidate := directory / filename):
            return candidate.absolute()

    if use_path and (which := shutil.which(filename)) is not None:
        return pathlib.Path(which).absolute()

    return None

"""
Foreign-function boundary with the CUDA runtime library.

Only one symbol is ever needed from the runtime library at build time::

    cudaError_t cudaRuntimeGetVersion(int * runtimeVersion);

The library is loaded for the duration of the query and unloaded afterwards, including when the query fails.
"""

import _ctypes
import contextlib
import ctypes
import logging
import pathlib
import sys
import typing

import semantic_version

from cudart_provision.errors import VersionQueryFailed

def unload(library : ctypes.CDLL) -> None:
    """
    Release the handle of `library`.

    :py:mod:`ctypes` never unloads a library by itself.
    """
    if sys.platform == 'win32':
        _ctypes.FreeLibrary(library._handle) # type: ignore[attr-defined] # pylint: disable=protected-access
    else:
        _ctypes.dlclose(library._handle) # type: ignore[attr-defined] # pylint: disable=protected-access

@contextlib.contextmanager
def load_library(path : str | pathlib.Path) -> typing.Generator[ctypes.CDLL, None, None]:
    """
    Load the shared library at `path`, and unload it when leaving the context.

    Raises :py:class:`OSError` if the library cannot be loaded.
    """
    library = ctypes.CDLL(str(path))
    logging.debug(f'Library {library} loaded successfully.')
    try:
        yield library
    finally:
        unload(library)
        logging.debug(f'Library {path} unloaded.')

def decode_version(value : int) -> semantic_version.Version:
    """
    Decode a version as reported by ``cudaRuntimeGetVersion``, i.e. ``1000 * major + 10 * minor``.

    >>> from cudart_provision.tools.runtime import decode_version
    >>> decode_version(12040)
    Version('12.4.0')
    >>> decode_version(8000)
    Version('8.0.0')
    """
    return semantic_version.Version(major = value // 1000, minor = (value % 100) // 10, patch = 0)

def query_library_version(path : str | pathlib.Path) -> semantic_version.Version:
    """
    Load the runtime library at `path` and query its version.
    """
    try:
        with load_library(path) as libcudart:
            try:
                get_version = libcudart.cudaRuntimeGetVersion
            except AttributeError as error:
                raise VersionQueryFailed(f'{path} does not export cudaRuntimeGetVersion.') from error

            get_version.argtypes = (ctypes.POINTER(ctypes.c_int),)
            get_version.restype = ctypes.c_int

            value = ctypes.c_int()
            if (status := get_version(ctypes.byref(value))) != 0:
                raise VersionQueryFailed(f'cudaRuntimeGetVersion failed with error code {status}.')
    except OSError as error:
        raise VersionQueryFailed(f'Could not load {path}: {error}') from error

    version = decode_version(value.value)
    logging.info(f'Runtime library {path} has version {version.major}.{version.minor}.')
    return version

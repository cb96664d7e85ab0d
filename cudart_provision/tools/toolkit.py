"""
Discovery of the CUDA toolkit, its runtime library, and a compiler toolchain.
"""

import dataclasses
import logging
import os
import pathlib
import re
import shutil
import subprocess
import sys
import typing

import semantic_version

from cudart_provision.errors import NotFound, ProvisionError
from cudart_provision.utils.environment import EnvironmentField, first_defined
from cudart_provision.utils.search import find_binary, find_library, library_patterns, library_subdirs

TOOLKIT_OVERRIDES : typing.Final[tuple[str, ...]] = ('CUDA_PATH', 'CUDA_HOME', 'CUDA_ROOT')
"""
Environment variables pointing to the toolkit, by decreasing priority.
"""

HOST_COMPILER_SUPPORT : typing.Final[tuple[tuple[semantic_version.SimpleSpec, int], ...]] = (
    (semantic_version.SimpleSpec('<8'), 4),
    (semantic_version.SimpleSpec('>=8,<9'), 5),
    (semantic_version.SimpleSpec('>=9,<9.2'), 6),
    (semantic_version.SimpleSpec('>=9.2,<10.1'), 7),
    (semantic_version.SimpleSpec('>=10.1,<11'), 8),
    (semantic_version.SimpleSpec('>=11,<11.1'), 9),
    (semantic_version.SimpleSpec('>=11.1,<11.4'), 10),
    (semantic_version.SimpleSpec('>=11.4,<12'), 11),
    (semantic_version.SimpleSpec('>=12,<12.4'), 12),
    (semantic_version.SimpleSpec('>=12.4,<12.8'), 13),
    (semantic_version.SimpleSpec('>=12.8,<13'), 14),
    (semantic_version.SimpleSpec('>=13'), 15),
)
"""
Highest major version of ``gcc`` supported by each CUDA version.

References:

* https://docs.nvidia.com/cuda/cuda-installation-guide-linux/index.html#host-compiler-support-policy
"""

class Settings:
    """
    Settings read from the environment.
    """
    host_compiler = EnvironmentField(env = 'CUDAHOSTCXX', converter = pathlib.Path, required = False)
    """
    Host compiler to use instead of searching for one.
    """

@dataclasses.dataclass(frozen = True, slots = True)
class Toolchain:
    """
    A CUDA compiler and the host compiler it drives.
    """
    cuda_compiler : pathlib.Path
    host_compiler : pathlib.Path
    version : semantic_version.Version

def _version_key(path : pathlib.Path) -> tuple[int, ...]:
    return tuple(int(x) for x in re.findall(r'[0-9]+', path.name))

def conventional_toolkit_dirs(*, platform : str = sys.platform) -> tuple[pathlib.Path, ...]:
    """
    Usual installation directories of the toolkit, newest versions first.
    """
    if platform == 'win32':
        base = pathlib.Path(os.environ.get('ProgramFiles', r'C:\Program Files')) / 'NVIDIA GPU Computing Toolkit' / 'CUDA'
        return tuple(sorted(base.glob('v*'), key = _version_key, reverse = True))

    if platform == 'darwin':
        return tuple(sorted(pathlib.Path('/Developer/NVIDIA').glob('CUDA-*'), key = _version_key, reverse = True)) + (
            pathlib.Path('/usr/local/cuda'),
        )

    return (
        pathlib.Path('/usr/local/cuda'),
        pathlib.Path('/opt/cuda'),
    ) + tuple(sorted(pathlib.Path('/usr/local').glob('cuda-*'), key = _version_key, reverse = True))

def toolkit_dirs(*, platform : str = sys.platform) -> tuple[pathlib.Path, ...]:
    """
    Candidate toolkit directories, in search order:

    #. the first defined variable of :py:data:`TOOLKIT_OVERRIDES`
    #. the prefix of ``nvcc`` if it is in ``PATH``
    #. :py:func:`conventional_toolkit_dirs`
    """
    candidates : list[pathlib.Path] = []

    if (override := first_defined(TOOLKIT_OVERRIDES)) is not None:
        logging.info(f'Using toolkit location from {override[0]}: {override[1]}.')
        if not (path := pathlib.Path(override[1])).is_dir():
            logging.warning(f'{override[0]}={override[1]} is not a directory, searching other locations.')
        candidates.append(path)

    if (nvcc := shutil.which('nvcc')) is not None:
        candidates.append(pathlib.Path(nvcc).resolve().parent.parent)

    candidates.extend(conventional_toolkit_dirs(platform = platform))

    return tuple(dict.fromkeys(candidates))

def find_toolkit(
    dirs : typing.Sequence[pathlib.Path] | None = None,
    *,
    platform : str = sys.platform,
) -> pathlib.Path:
    """
    Find the toolkit installation directory.
    """
    if dirs is None:
        dirs = toolkit_dirs(platform = platform)

    for directory in dirs:
        if directory.is_dir():
            logging.info(f'Found the CUDA toolkit at {directory}.')
            return directory

    raise NotFound('the CUDA toolkit', searched = dirs)

def discover_runtime_library(
    toolkit_path : pathlib.Path,
    *,
    platform : str = sys.platform,
) -> pathlib.Path:
    """
    Find the runtime library in the library subdirectories of `toolkit_path`.

    Only the selected toolkit is searched: the runtime library and ``nvcc`` come from the same installation.

    :return: The resolved path of the library.
    """
    found = find_library(
        patterns = library_patterns('cudart', platform = platform),
        dirs = (toolkit_path / subdir for subdir in library_subdirs(platform = platform)),
    )

    if found is None:
        raise NotFound('the CUDA runtime library', searched = (toolkit_path,))

    logging.info(f'Found the CUDA runtime library at {found}.')
    return found

def get_nvcc_version(nvcc : str | pathlib.Path = 'nvcc') -> semantic_version.Version:
    """
    Get version of ``nvcc``.
    """
    try:
        output = subprocess.check_output((nvcc, '--version')).decode()
    except (OSError, subprocess.CalledProcessError) as error:
        raise ProvisionError(f'{nvcc} --version failed: {error}') from error

    if (matched := re.search(pattern = r'release ([0-9]+)\.([0-9]+), V([0-9]+)\.([0-9]+)\.([0-9]+)', string = output)) is None:
        raise ProvisionError(f'{nvcc} --version cannot be parsed.')

    return semantic_version.Version(major = int(matched.group(3)), minor = int(matched.group(4)), patch = int(matched.group(5)))

def max_gcc_major(version : semantic_version.Version) -> int:
    """
    >>> from semantic_version import Version
    >>> from cudart_provision.tools.toolkit import max_gcc_major
    >>> max_gcc_major(Version('11.8.0'))
    11
    """
    for spec, major in HOST_COMPILER_SUPPORT:
        if version in spec:
            return major
    raise ValueError(version)

def get_gcc_version(gcc : str | pathlib.Path) -> semantic_version.Version | None:
    """
    Get version of ``gcc``, or :py:obj:`None` if it cannot be run.
    """
    try:
        output = subprocess.check_output((gcc, '-dumpfullversion', '-dumpversion'), stderr = subprocess.DEVNULL).decode().strip()
    except (OSError, subprocess.CalledProcessError) as error:
        logging.warning(f'Could not get the version of {gcc}: {error}')
        return None
    return semantic_version.Version.coerce(output)

def find_host_compiler(
    version : semantic_version.Version,
    *,
    platform : str = sys.platform,
) -> pathlib.Path:
    """
    Find a host compiler supported by the CUDA `version`.

    On Linux, among ``gcc`` and ``gcc-N``, the one with the highest supported version is selected.
    """
    if (override := Settings().host_compiler) is not None:
        if (found := find_binary(str(override), platform = platform)) is None:
            raise NotFound(f'the host compiler {override} (from CUDAHOSTCXX)')
        logging.info(f'Using host compiler {found} from CUDAHOSTCXX.')
        return found

    if platform in ('darwin', 'win32'):
        name = 'clang' if platform == 'darwin' else 'cl'
        if (found := find_binary(name, platform = platform)) is None:
            raise NotFound(f'a host compiler ({name})')
        return found

    max_major = max_gcc_major(version)

    best : tuple[semantic_version.Version, pathlib.Path] | None = None
    for name in ['gcc'] + [f'gcc-{major}' for major in range(max_major, 3, -1)]:
        if (path := find_binary(name, platform = platform)) is None:
            continue
        if (gcc_version := get_gcc_version(path)) is None:
            continue
        if gcc_version.major > max_major:
            logging.info(f'Ignoring {path} (version {gcc_version}), CUDA {version} supports gcc up to {max_major}.')
            continue
        if best is None or gcc_version > best[0]:
            best = (gcc_version, path)

    if best is None:
        raise NotFound(f'a host compiler supported by CUDA {version} (gcc {max_major} or older)')

    logging.info(f'Selected host compiler {best[1]} (version {best[0]}).')
    return best[1]

def find_toolchain(
    toolkit_path : pathlib.Path,
    *,
    platform : str = sys.platform,
) -> Toolchain:
    """
    Find ``nvcc`` in `toolkit_path`, then a host compiler compatible with it.
    """
    if (nvcc := find_binary('nvcc', (toolkit_path / 'bin',), platform = platform)) is None:
        raise NotFound('nvcc', searched = (toolkit_path / 'bin', 'PATH'))

    version = get_nvcc_version(nvcc)
    logging.info(f'Found {nvcc} (version {version}).')

    return Toolchain(
        cuda_compiler = nvcc,
        host_compiler = find_host_compiler(version, platform = platform),
        version = version,
    )

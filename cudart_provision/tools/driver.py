import dataclasses
import logging
import os
import pathlib
import subprocess
import sys
import typing

from cudart_provision.errors import NotFound
from cudart_provision.utils.search import find_binary, find_library, library_patterns

DRIVER_LIBRARY : typing.Final[dict[str, str]] = {
    'win32' : 'nvcuda',
    'darwin' : 'cuda',
    'linux' : 'cuda',
}

NVML_LIBRARY : typing.Final[dict[str, str]] = {
    'win32' : 'nvml',
    'darwin' : 'nvidia-ml',
    'linux' : 'nvidia-ml',
}

SMI : typing.Final[str] = 'nvidia-smi'

OPTIONAL_DRIVER_PLATFORMS : typing.Final[frozenset[str]] = frozenset({'darwin'})
"""
Platforms on which the NVIDIA driver may be absent.
"""

def driver_optional(platform : str = sys.platform) -> bool:
    return platform in OPTIONAL_DRIVER_PLATFORMS

def system_library_dirs(*, platform : str = sys.platform) -> tuple[pathlib.Path, ...]:
    """
    Directories that may hold the driver library, in search order.
    """
    if platform == 'win32':
        return (pathlib.Path(os.environ.get('SystemRoot', r'C:\Windows')) / 'System32',)

    if platform == 'darwin':
        return (
            pathlib.Path('/usr/local/cuda/lib'),
            pathlib.Path('/Library/Frameworks/CUDA.framework/Versions/A/Libraries'),
        )

    # Honor the dynamic loader search path first, e.g. in containers exposing the driver from the host.
    return tuple(pathlib.Path(x) for x in os.environ.get('LD_LIBRARY_PATH', '').split(os.pathsep) if x) + (
        pathlib.Path('/usr/lib/x86_64-linux-gnu'),
        pathlib.Path('/usr/lib/aarch64-linux-gnu'),
        pathlib.Path('/usr/lib64'),
        pathlib.Path('/usr/lib'),
        pathlib.Path('/usr/local/nvidia/lib64'),
        pathlib.Path('/usr/lib/wsl/lib'),
    )

def find_driver(*,
    dirs : typing.Sequence[pathlib.Path] | None = None,
    platform : str = sys.platform,
) -> pathlib.Path | None:
    """
    Find the driver library.

    :return: The resolved path of the driver library, or :py:obj:`None` on platforms where the driver is optional.
    """
    if dirs is None:
        dirs = system_library_dirs(platform = platform)

    if (found := find_library(library_patterns(DRIVER_LIBRARY.get(platform, 'cuda'), platform = platform), dirs)) is not None:
        logging.info(f'Found the driver library at {found}.')
        return found

    if driver_optional(platform):
        logging.warning('The CUDA driver library could not be found.')
        return None

    raise NotFound('the CUDA driver library', searched = dirs)

def validate_executable(path : pathlib.Path) -> bool:
    """
    Run `path` without arguments, and check that it exits successfully.
    """
    try:
        subprocess.run(
            args = (path,),
            stdout = subprocess.DEVNULL, stderr = subprocess.DEVNULL,
            check = True,
            timeout = 60,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as error:
        logging.debug(f'Running {path} failed: {error}')
        return False
    return True

@dataclasses.dataclass(frozen = True, slots = True)
class DriverUtilities:
    libnvml_path : pathlib.Path | None = None
    nvidiasmi_path : pathlib.Path | None = None

def discover_driver_utilities(
    driver_dir : pathlib.Path | None,
    *,
    platform : str = sys.platform,
) -> DriverUtilities:
    """
    Find the NVML library and the ``nvidia-smi`` executable.

    Either one is enough. If both are missing, this is fatal, unless the driver is optional on `platform`.
    A ``nvidia-smi`` that fails to run is considered missing.
    """
    if platform == 'win32':
        nvml_dir = pathlib.Path(os.environ.get('ProgramFiles', r'C:\Program Files')) / 'NVIDIA Corporation' / 'NVSMI'
        if not nvml_dir.is_dir():
            raise NotFound('the NVIDIA driver installation location', searched = (nvml_dir,))
        dirs : tuple[pathlib.Path, ...] = (nvml_dir,)
    else:
        dirs = (driver_dir,) if driver_dir is not None else ()

    libnvml_path = find_library(library_patterns(NVML_LIBRARY.get(platform, 'nvidia-ml'), platform = platform), dirs)
    if libnvml_path is None:
        logging.warning(f'NVML not found, resorting to {SMI}.')

    nvidiasmi_path = find_binary(SMI, dirs, platform = platform)
    if nvidiasmi_path is None:
        logging.warning(f'{SMI} not found.')
    elif not validate_executable(nvidiasmi_path):
        logging.warning(f'{SMI} failure ({nvidiasmi_path}).')
        nvidiasmi_path = None

    if libnvml_path is None and nvidiasmi_path is None:
        if driver_optional(platform):
            logging.warning(f'Neither NVML nor {SMI} can be found.')
        else:
            raise NotFound(f'NVML nor {SMI}', searched = dirs)

    return DriverUtilities(libnvml_path = libnvml_path, nvidiasmi_path = nvidiasmi_path)

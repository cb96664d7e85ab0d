"""
A provisioning run::

    discover runtime -> discover driver -> query version -> select capability -> discover compiler
        -> reconcile -> reuse
                     -> rebuild -> build artifacts -> persist

The previous record is set aside (as a backup) for the whole run. If the run fails at any step,
neither the record nor its backup survive, so that loading the bindings never picks up a record
describing a failed or partial build.
"""

import dataclasses
import logging
import pathlib
import sys

from cudart_provision import build, config
from cudart_provision.config import Reconciliation, ToolchainConfig
from cudart_provision.errors import NoCompatibleCapability
from cudart_provision.tools import architecture, device_properties, driver, runtime, toolkit
from cudart_provision.tools.architecture import ComputeCapability
from cudart_provision.utils.detect import GPUDetector

@dataclasses.dataclass(frozen=True, slots=True)
class Discovery:
    config: ToolchainConfig
    toolchain: toolkit.Toolchain

def local_devices(
    libcuda_path: pathlib.Path | None,
    nvidiasmi_path: pathlib.Path | None,
) -> tuple[ComputeCapability, ...]:
    """
    Compute capabilities of the local devices, through the driver library if available, otherwise through ``nvidia-smi``.
    """
    if libcuda_path is not None:
        return device_properties.local_capabilities(libcuda_path)
    if nvidiasmi_path is not None:
        return GPUDetector(executable=nvidiasmi_path).capabilities()
    return ()

def discover(*, platform: str = sys.platform) -> Discovery:
    """
    Discover the toolchain, and select the compute capability to build for.
    """
    # Runtime library.
    dirs = toolkit.toolkit_dirs(platform=platform)
    toolkit_path = toolkit.find_toolkit(dirs, platform=platform)
    libcudart_path = toolkit.discover_runtime_library(toolkit_path, platform=platform)

    # Driver and related utilities.
    libcuda_path = driver.find_driver(platform=platform)
    utilities = driver.discover_driver_utilities(
        libcuda_path.parent if libcuda_path is not None else None,
        platform=platform,
    )

    runtime_version = runtime.query_library_version(libcudart_path)

    # Select the highest compatible device capability.
    supported = architecture.supported_capabilities(runtime_version)
    if not supported:
        raise NoCompatibleCapability(f'No support for CUDA {runtime_version.major}.{runtime_version.minor}.')
    capability = architecture.select_capability(
        local_devices=local_devices(libcuda_path, utilities.nvidiasmi_path),
        supported_by_toolchain=supported,
    )
    logging.info(f'Selected compute capability {capability}.')

    toolchain = toolkit.find_toolchain(toolkit_path, platform=platform)

    return Discovery(
        config=ToolchainConfig(
            toolkit_path=str(toolkit_path),
            toolkit_version=str(toolchain.version),
            libcudart_path=str(libcudart_path),
            libcudart_version=f'{runtime_version.major}.{runtime_version.minor}',
            libcuda_path=str(libcuda_path) if libcuda_path is not None else None,
            libnvml_path=str(utilities.libnvml_path) if utilities.libnvml_path is not None else None,
            nvidiasmi_path=str(utilities.nvidiasmi_path) if utilities.nvidiasmi_path is not None else None,
            cuda_compiler=str(toolchain.cuda_compiler),
            host_compiler=str(toolchain.host_compiler),
            architecture=capability.as_sm,
        ),
        toolchain=toolchain,
    )

def previous_record(path: pathlib.Path) -> config.Record | None:
    """
    Read the record of the previous run, if any. An unreadable record is ignored.
    """
    try:
        return config.read_record(path)
    except (SyntaxError, ValueError) as error:
        logging.warning(f'Ignoring the unreadable previous record {path}: {error}')
        return None

def provision(layout: build.Layout, *, force: bool = False, platform: str = sys.platform) -> Reconciliation:
    """
    Run the provisioning.

    The build is skipped only if the discovered configuration matches the previous record,
    all artifacts are present, and `force` is not set.
    """
    if layout.config_path.is_file():
        layout.config_path.replace(layout.backup_path)

    try:
        discovery = discover(platform=platform)

        previous = previous_record(layout.backup_path)

        match config.reconcile(discovery.config, previous):
            case Reconciliation.REUSE if force:
                logging.info('Rebuilding as requested.')
            case Reconciliation.REUSE if not all(artifact.is_file() for artifact in layout.artifacts):
                logging.info('Some artifacts are missing, rebuilding.')
            case Reconciliation.REUSE:
                logging.info('Already built for this toolchain, no need to rebuild.')
                layout.backup_path.replace(layout.config_path)
                return Reconciliation.REUSE
            case Reconciliation.REBUILD if previous is not None:
                logging.info(f'The toolchain changed ({", ".join(config.differences(discovery.config, previous))}), rebuilding.')
            case Reconciliation.REBUILD:
                logging.info('No previous build, building.')

        build.build_artifacts(discovery.toolchain, discovery.config.architecture, layout)

        config.persist(discovery.config, layout.config_path)
        logging.info(f'Wrote {layout.config_path}.')
    except BaseException:
        logging.error(f'Provisioning failed, removing {layout.config_path}.')
        layout.config_path.unlink(missing_ok=True)
        layout.backup_path.unlink(missing_ok=True)
        raise

    layout.backup_path.unlink(missing_ok=True)
    return Reconciliation.REBUILD

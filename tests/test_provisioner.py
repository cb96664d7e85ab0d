import logging
import pathlib
import typing
import unittest.mock

import pytest
import semantic_version

from cudart_provision import build, config, provisioner
from cudart_provision.build import Layout
from cudart_provision.config import Reconciliation
from cudart_provision.errors import CompilerInvocationFailed, NoCompatibleCapability, NotFound, VersionQueryFailed
from cudart_provision.tools import device_properties, driver, runtime, toolkit
from cudart_provision.tools.architecture import ComputeCapability
from cudart_provision.utils.detect import GPUDetector

FIND_TOOLKIT = toolkit.find_toolkit
DISCOVER_RUNTIME_LIBRARY = toolkit.discover_runtime_library

def returning(value: typing.Any) -> typing.Callable[..., typing.Any]:
    return lambda *args, **kwargs: value

def raising(error: BaseException) -> typing.Callable[..., typing.Any]:
    def raiser(*args, **kwargs):
        raise error
    return raiser

STEPS: typing.Final[tuple[tuple[typing.Any, str, BaseException], ...]] = (
    (toolkit, 'find_toolkit', NotFound('the CUDA toolkit')),
    (toolkit, 'discover_runtime_library', NotFound('the CUDA runtime library')),
    (driver, 'find_driver', NotFound('the CUDA driver library')),
    (driver, 'discover_driver_utilities', NotFound('NVML nor nvidia-smi')),
    (runtime, 'query_library_version', VersionQueryFailed('cudaRuntimeGetVersion failed with error code 35.')),
    (device_properties, 'local_capabilities', NoCompatibleCapability('No CUDA device was detected.')),
    (toolkit, 'find_toolchain', NotFound('nvcc')),
    (build, 'build_artifacts', CompilerInvocationFailed(cmd = ('nvcc',), returncode = 1)),
    (config, 'persist', OSError('No space left on device')),
    (build, 'build_artifacts', KeyboardInterrupt()),
)
"""
Each step of a provisioning run, and an error it may raise.
"""

@pytest.fixture
def discovered(tmp_path: pathlib.Path, nvcc: pathlib.Path, monkeypatch) -> pathlib.Path:
    """
    Every discovery step succeeds: a toolkit with the fake ``nvcc``, and a single device of compute capability 8.6.

    :return: The toolkit path.
    """
    toolkit_path = nvcc.parent.parent

    monkeypatch.setattr(toolkit, 'toolkit_dirs', returning((toolkit_path,)))
    monkeypatch.setattr(toolkit, 'find_toolkit', returning(toolkit_path))
    monkeypatch.setattr(toolkit, 'discover_runtime_library', returning(toolkit_path / 'lib64' / 'libcudart.so.12.4.127'))
    monkeypatch.setattr(driver, 'find_driver', returning(pathlib.Path('/usr/lib64/libcuda.so.550.54.14')))
    monkeypatch.setattr(driver, 'discover_driver_utilities', returning(driver.DriverUtilities(
        libnvml_path = pathlib.Path('/usr/lib64/libnvidia-ml.so.550.54.14'),
        nvidiasmi_path = pathlib.Path('/usr/bin/nvidia-smi'),
    )))
    monkeypatch.setattr(runtime, 'query_library_version', returning(semantic_version.Version('12.4.0')))
    monkeypatch.setattr(device_properties, 'local_capabilities', returning((ComputeCapability(8, 6),)))
    monkeypatch.setattr(toolkit, 'find_toolchain', returning(toolkit.Toolchain(
        cuda_compiler = nvcc,
        host_compiler = pathlib.Path('/usr/bin/gcc-12'),
        version = semantic_version.Version('12.4.131'),
    )))

    return toolkit_path

class TestDiscover:
    """
    Tests for :py:func:`cudart_provision.provisioner.discover`.
    """
    def test(self, discovered: pathlib.Path, nvcc: pathlib.Path) -> None:
        result = provisioner.discover(platform = 'linux')

        assert result.config == config.ToolchainConfig(
            toolkit_path = str(discovered),
            toolkit_version = '12.4.131',
            libcudart_path = str(discovered / 'lib64' / 'libcudart.so.12.4.127'),
            libcudart_version = '12.4',
            libcuda_path = '/usr/lib64/libcuda.so.550.54.14',
            libnvml_path = '/usr/lib64/libnvidia-ml.so.550.54.14',
            nvidiasmi_path = '/usr/bin/nvidia-smi',
            cuda_compiler = str(nvcc),
            host_compiler = '/usr/bin/gcc-12',
            architecture = 'sm_86',
        )
        assert result.toolchain.cuda_compiler == nvcc

    def test_unsupported_runtime(self, discovered: pathlib.Path, monkeypatch) -> None:
        monkeypatch.setattr(runtime, 'query_library_version', returning(semantic_version.Version('0.9.0')))

        with pytest.raises(NoCompatibleCapability, match = r'No support for CUDA 0\.9\.'):
            provisioner.discover(platform = 'linux')

    def test_device_too_old(self, discovered: pathlib.Path, monkeypatch) -> None:
        monkeypatch.setattr(device_properties, 'local_capabilities', returning((ComputeCapability(8, 6), ComputeCapability(3, 0))))

        with pytest.raises(NoCompatibleCapability, match = 'compute capability 3.0'):
            provisioner.discover(platform = 'linux')

    def test_same_installation(self, discovered: pathlib.Path, tmp_path: pathlib.Path, monkeypatch) -> None:
        """
        The runtime library is taken from the selected toolkit, never from a later candidate.
        """
        override = tmp_path / 'override'
        override.mkdir()
        other = tmp_path / 'other'
        (other / 'lib64').mkdir(parents = True)
        (other / 'lib64' / 'libcudart.so.11.8.89').write_bytes(b'')

        monkeypatch.setattr(toolkit, 'toolkit_dirs', returning((override, other)))
        monkeypatch.setattr(toolkit, 'find_toolkit', FIND_TOOLKIT)
        monkeypatch.setattr(toolkit, 'discover_runtime_library', DISCOVER_RUNTIME_LIBRARY)

        with pytest.raises(NotFound, match = 'Could not find the CUDA runtime library') as excinfo:
            provisioner.discover(platform = 'linux')

        assert excinfo.value.searched == (override,)

        (override / 'lib64').mkdir()
        (override / 'lib64' / 'libcudart.so.12.4.127').write_bytes(b'')

        result = provisioner.discover(platform = 'linux')

        assert result.config.toolkit_path == str(override)
        assert pathlib.Path(result.config.libcudart_path).is_relative_to(override.resolve())

    def test_no_driver(self, discovered: pathlib.Path, monkeypatch) -> None:
        """
        Without the driver library, the devices are queried through ``nvidia-smi``.
        """
        monkeypatch.setattr(driver, 'find_driver', returning(None))

        with unittest.mock.patch.object(GPUDetector, 'capabilities', return_value = (ComputeCapability(7, 5),)) as capabilities:
            result = provisioner.discover(platform = 'darwin')

        capabilities.assert_called_once()
        assert result.config.libcuda_path is None
        assert result.config.architecture == 'sm_75'

class TestLocalDevices:
    """
    Tests for :py:func:`cudart_provision.provisioner.local_devices`.
    """
    def test_none(self) -> None:
        assert provisioner.local_devices(None, None) == ()

    def test_driver_first(self, monkeypatch) -> None:
        monkeypatch.setattr(device_properties, 'local_capabilities', returning((ComputeCapability(9, 0),)))

        with unittest.mock.patch.object(GPUDetector, 'capabilities') as capabilities:
            assert provisioner.local_devices(pathlib.Path('libcuda.so'), pathlib.Path('nvidia-smi')) == (ComputeCapability(9, 0),)

        capabilities.assert_not_called()

class TestProvision:
    """
    Tests for :py:func:`cudart_provision.provisioner.provision`.
    """
    def test_first_run(self, discovered: pathlib.Path, layout: Layout) -> None:
        assert provisioner.provision(layout, platform = 'linux') == Reconciliation.REBUILD

        assert config.load(layout.config_path).architecture == 'sm_86'
        assert not layout.backup_path.exists()
        assert all(artifact.is_file() for artifact in layout.artifacts)

    def test_reuse(self, discovered: pathlib.Path, layout: Layout, monkeypatch, caplog) -> None:
        """
        Nothing changed: the record is restored as is, and nothing is compiled.
        """
        provisioner.provision(layout, platform = 'linux')
        record = layout.config_path.read_bytes()

        monkeypatch.setattr(build, 'build_artifacts', raising(AssertionError('should not build')))

        with caplog.at_level(logging.INFO):
            assert provisioner.provision(layout, platform = 'linux') == Reconciliation.REUSE

        assert 'Already built for this toolchain, no need to rebuild.' in caplog.text
        assert layout.config_path.read_bytes() == record
        assert not layout.backup_path.exists()

    def test_toolchain_changed(self, discovered: pathlib.Path, layout: Layout, nvcc: pathlib.Path, monkeypatch, caplog) -> None:
        provisioner.provision(layout, platform = 'linux')

        monkeypatch.setattr(toolkit, 'find_toolchain', returning(toolkit.Toolchain(
            cuda_compiler = nvcc,
            host_compiler = pathlib.Path('/usr/bin/gcc-11'),
            version = semantic_version.Version('12.4.131'),
        )))

        with caplog.at_level(logging.INFO):
            assert provisioner.provision(layout, platform = 'linux') == Reconciliation.REBUILD

        assert 'The toolchain changed (host_compiler), rebuilding.' in caplog.text
        assert config.load(layout.config_path).host_compiler == '/usr/bin/gcc-11'
        assert not layout.backup_path.exists()

    def test_artifact_missing(self, discovered: pathlib.Path, layout: Layout, caplog) -> None:
        provisioner.provision(layout, platform = 'linux')
        layout.utils_ptx.unlink()

        with caplog.at_level(logging.INFO):
            assert provisioner.provision(layout, platform = 'linux') == Reconciliation.REBUILD

        assert 'Some artifacts are missing, rebuilding.' in caplog.text
        assert layout.utils_ptx.is_file()

    def test_force(self, discovered: pathlib.Path, layout: Layout) -> None:
        provisioner.provision(layout, platform = 'linux')

        assert provisioner.provision(layout, force = True, platform = 'linux') == Reconciliation.REBUILD
        assert layout.config_path.is_file()

    def test_unreadable_previous(self, discovered: pathlib.Path, layout: Layout, caplog) -> None:
        layout.config_path.write_text('this is not a record\n')

        with caplog.at_level(logging.WARNING):
            assert provisioner.provision(layout, platform = 'linux') == Reconciliation.REBUILD

        assert 'Ignoring the unreadable previous record' in caplog.text
        assert config.load(layout.config_path).architecture == 'sm_86'

    @pytest.mark.parametrize(('module', 'name', 'error'), STEPS)
    @pytest.mark.parametrize('previous', (False, True))
    def test_failure(self, discovered: pathlib.Path, layout: Layout, monkeypatch, module, name: str, error: BaseException, previous: bool) -> None:
        """
        Whichever step fails, neither the record nor its backup survive, and the error propagates.
        The run is forced so that the build steps are reached even if a previous build could be reused.
        """
        if previous:
            provisioner.provision(layout, platform = 'linux')
            assert layout.config_path.is_file()

        monkeypatch.setattr(module, name, raising(error))

        with pytest.raises(type(error)):
            provisioner.provision(layout, force = True, platform = 'linux')

        assert not layout.config_path.exists()
        assert not layout.backup_path.exists()

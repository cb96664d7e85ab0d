"""
Compilation of the native shim sources.

Three artifacts are produced with the CUDA compiler:

* the shared library ``libwrapcuda`` from ``wrapcuda.c``
* ``utils.ptx`` from ``utils.cu``
* the test fixture ``vadd.ptx`` from ``vadd.cu``, when the test sources are available (they are not installed with the package)

All previous artifacts are removed before compiling, so that a failed build never leaves a mix of old and new files.
"""

import dataclasses
import logging
import pathlib
import subprocess
import sys
import typing

from cudart_provision.errors import CompilerInvocationFailed
from cudart_provision.tools.toolkit import Toolchain
from cudart_provision.utils.subprocess_helpers import run_logged

LIBFILE: typing.Final[str] = 'libwrapcuda'
UTILSFILE: typing.Final[str] = 'utils'
FIXTUREFILE: typing.Final[str] = 'vadd'

CONFIG: typing.Final[str] = 'ext.py'

def dlext(platform: str = sys.platform) -> str:
    """
    Extension of shared libraries on `platform`.
    """
    match platform:
        case 'win32':
            return 'dll'
        case 'darwin':
            return 'dylib'
        case _:
            return 'so'

@dataclasses.dataclass(frozen=True, slots=True)
class Layout:
    """
    Where the sources are, and where the artifacts and the toolchain record go.
    """
    deps_dir: pathlib.Path
    test_dir: pathlib.Path
    platform: str = sys.platform

    @classmethod
    def default(cls) -> 'Layout':
        """
        The ``deps`` directory of the package, and the test assets of the repository.
        """
        package = pathlib.Path(__file__).parent
        return cls(deps_dir=package / 'deps', test_dir=package.parent / 'tests' / 'assets')

    @property
    def config_path(self) -> pathlib.Path:
        return self.deps_dir / CONFIG

    @property
    def backup_path(self) -> pathlib.Path:
        return self.config_path.with_name(CONFIG + '.bak')

    @property
    def library(self) -> pathlib.Path:
        return self.deps_dir / f'{LIBFILE}.{dlext(self.platform)}'

    @property
    def utils_ptx(self) -> pathlib.Path:
        return self.deps_dir / f'{UTILSFILE}.ptx'

    @property
    def fixture_ptx(self) -> pathlib.Path:
        return self.test_dir / f'{FIXTUREFILE}.ptx'

    @property
    def fixture_source(self) -> pathlib.Path:
        return self.test_dir / f'{FIXTUREFILE}.cu'

    @property
    def has_fixture(self) -> bool:
        """
        Whether the test fixture source is available. It is not shipped with the package.
        """
        return self.fixture_source.is_file()

    @property
    def artifacts(self) -> tuple[pathlib.Path, ...]:
        if self.has_fixture:
            return (self.library, self.utils_ptx, self.fixture_ptx)
        return (self.library, self.utils_ptx)

    @property
    def outputs(self) -> tuple[pathlib.Path, ...]:
        """
        Every file a build may produce, including by-products.
        """
        outputs = (self.library, self.utils_ptx, self.fixture_ptx)
        if self.platform == 'win32':
            return outputs + (self.deps_dir / f'{LIBFILE}.exp', self.deps_dir / f'{LIBFILE}.lib')
        return outputs

def compile_with(
    toolchain: Toolchain,
    *,
    flags: typing.Sequence[str],
    args: typing.Sequence[str],
    cwd: pathlib.Path,
) -> None:
    """
    Run the CUDA compiler of `toolchain` in `cwd`.
    """
    cmd = (str(toolchain.cuda_compiler), *flags, *args)
    try:
        run_logged(args=cmd, cwd=cwd)
    except subprocess.CalledProcessError as error:
        raise CompilerInvocationFailed(cmd=cmd, returncode=error.returncode, stderr=error.stderr) from error
    except OSError as error:
        raise CompilerInvocationFailed(cmd=cmd, returncode=None, stderr=str(error)) from error

def build_artifacts(toolchain: Toolchain, architecture: str, layout: Layout) -> tuple[pathlib.Path, ...]:
    """
    Compile the shim sources of `layout` for `architecture` (e.g. ``sm_35``).

    :return: The artifacts.
    """
    flags = ['--compiler-bindir', str(toolchain.host_compiler), '--gpu-architecture', architecture]

    for output in layout.outputs:
        if output.exists():
            logging.info(f'Removing stale {output}.')
            output.unlink()

    shared = ['--shared']
    if layout.platform != 'win32':
        shared += ['--compiler-options', '-fPIC']

    compile_with(toolchain, flags=flags, args=[*shared, 'wrapcuda.c', '-o', layout.library.name], cwd=layout.deps_dir)
    compile_with(toolchain, flags=flags, args=['--ptx', f'{UTILSFILE}.cu', '-o', layout.utils_ptx.name], cwd=layout.deps_dir)
    if layout.has_fixture:
        compile_with(toolchain, flags=flags, args=['--ptx', layout.fixture_source.name, '-o', layout.fixture_ptx.name], cwd=layout.test_dir)
    else:
        logging.info(f'No test fixture source in {layout.test_dir}, skipping {layout.fixture_ptx.name}.')

    return layout.artifacts

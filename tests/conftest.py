import pathlib
import stat
import sys
import textwrap
import typing

import pytest

from cudart_provision.build import Layout
from cudart_provision.tools.toolkit import Settings

FAKE_NVCC: typing.Final[str] = """\
import pathlib
import sys

args = sys.argv[1:]

if args == ['--version']:
    print('nvcc: NVIDIA (R) Cuda compiler driver')
    print('Cuda compilation tools, release 12.4, V12.4.131')
    sys.exit(0)

arch = args[args.index('--gpu-architecture') + 1]
output = args.index('-o')
source = pathlib.Path(args[output - 1]).read_text()

if '#error' in source:
    print(f'{args[output - 1]}: error: {source.strip()}', file=sys.stderr)
    sys.exit(2)

print(f'compiling {args[output - 1]} for {arch}')
pathlib.Path(args[output + 1]).write_text(f'{arch}\\n{source}')
"""
"""
Mimics ``nvcc``: the output file holds the architecture followed by the source.
"""

def write_executable(path: pathlib.Path, code: str) -> pathlib.Path:
    """
    Write a Python script at `path` and make it executable.
    """
    path.write_text(f'#!{sys.executable}\n' + textwrap.dedent(code))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path

@pytest.fixture
def layout(tmp_path: pathlib.Path) -> Layout:
    """
    Shim sources in a temporary directory.
    """
    deps_dir = tmp_path / 'deps'
    test_dir = tmp_path / 'test'
    deps_dir.mkdir()
    test_dir.mkdir()

    (deps_dir / 'wrapcuda.c').write_text('int wrapcuda(void) { return 0; }\n')
    (deps_dir / 'utils.cu').write_text('__global__ void fill(float *data) {}\n')
    (test_dir / 'vadd.cu').write_text('__global__ void vadd(const float *a, const float *b, float *c) {}\n')

    return Layout(deps_dir=deps_dir, test_dir=test_dir, platform='linux')

@pytest.fixture
def nvcc(tmp_path: pathlib.Path) -> pathlib.Path:
    bindir = tmp_path / 'cuda' / 'bin'
    bindir.mkdir(parents=True)
    return write_executable(bindir / 'nvcc', FAKE_NVCC)

@pytest.fixture(autouse=True)
def reset_settings(monkeypatch) -> typing.Generator[None, None, None]:
    """
    Settings are cached at class level, start each test from a clean environment.
    """
    monkeypatch.delenv('CUDAHOSTCXX', raising=False)
    Settings.host_compiler.reset()
    yield
    Settings.host_compiler.reset()

@pytest.fixture
def make_executable() -> typing.Callable[[pathlib.Path, str], pathlib.Path]:
    return write_executable

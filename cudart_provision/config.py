"""
The toolchain record, written by a provisioning run and read when the bindings are loaded.

The record is a Python file made of one binding per line::

    # autogenerated file with properties of the toolchain
    toolkit_path = '/usr/local/cuda'
    libcudart_path = '/usr/local/cuda/lib64/libcudart.so.12.4.127'
    ...

It is never executed: reading it only evaluates literals.
"""

import ast
import dataclasses
import pathlib
import sys
import typing

import rich.table

from cudart_provision.utils.rich_helpers import TableMixin, mapping_to_table

if sys.version_info >= (3, 11):
    from enum import StrEnum
else:
    from backports.strenum import StrEnum

HEADER: typing.Final[str] = '# autogenerated file with properties of the toolchain'

Record: typing.TypeAlias = dict[str, typing.Any]
"""
Bindings read from a record, by name.
"""

class Reconciliation(StrEnum):
    """
    Outcome of comparing a freshly discovered configuration with the previous record.
    """
    REUSE = 'reuse'
    REBUILD = 'rebuild'

@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class ToolchainConfig(TableMixin):
    """
    Properties of the toolchain discovered by a provisioning run.

    Paths and versions are stored as strings so that the record only holds literals.
    """
    toolkit_path: str
    toolkit_version: str
    libcudart_path: str
    libcudart_version: str
    libcuda_path: str | None
    libnvml_path: str | None
    nvidiasmi_path: str | None
    cuda_compiler: str
    host_compiler: str
    architecture: str

    def as_dict(self) -> Record:
        return {field.name: getattr(self, field.name) for field in dataclasses.fields(self)}

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(field.name for field in dataclasses.fields(cls))

    @classmethod
    def from_dict(cls, record: typing.Mapping[str, typing.Any]) -> 'ToolchainConfig':
        """
        Build from `record`, which must hold exactly the fields of the configuration.
        """
        if (missing := set(cls.names()) - record.keys()):
            raise ValueError(f'Missing fields in the toolchain record: {sorted(missing)}.')
        if (unexpected := record.keys() - set(cls.names())):
            raise ValueError(f'Unexpected fields in the toolchain record: {sorted(unexpected)}.')
        return cls(**record)

    def to_table(self) -> rich.table.Table:
        return mapping_to_table(self.as_dict(), title='Toolchain')

def reconcile(fresh: ToolchainConfig, previous: typing.Mapping[str, typing.Any] | None) -> Reconciliation:
    """
    Compare `fresh` with the `previous` record.

    The previous build can only be reused if the previous record holds exactly the same
    bindings, with the same values, as `fresh`.
    """
    if previous is None:
        return Reconciliation.REBUILD
    return Reconciliation.REUSE if dict(previous) == fresh.as_dict() else Reconciliation.REBUILD

def differences(fresh: ToolchainConfig, previous: typing.Mapping[str, typing.Any]) -> tuple[str, ...]:
    """
    Names of the bindings that differ between `fresh` and `previous`, including missing and extra ones.
    """
    current = fresh.as_dict()
    return tuple(sorted(
        name for name in current.keys() | previous.keys()
        if name not in current or name not in previous or current[name] != previous[name]
    ))

def persist(config: ToolchainConfig, path: pathlib.Path) -> None:
    """
    Write `config` to `path`, one binding per line, in field order.
    """
    lines = [HEADER] + [f'{name} = {value!r}' for name, value in config.as_dict().items()]
    path.write_text('\n'.join(lines) + '\n', encoding='utf-8')

def read_record(path: pathlib.Path) -> Record | None:
    """
    Read the bindings of the record at `path`, or :py:obj:`None` if there is no record.

    Raises :py:class:`ValueError` (or :py:class:`SyntaxError`) if the record holds anything else than literal bindings.
    """
    if not path.is_file():
        return None

    tree = ast.parse(path.read_text(encoding='utf-8'), filename=str(path))

    record: Record = {}
    for node in tree.body:
        if not (isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name)):
            raise ValueError(f'{path}:{node.lineno}: not a binding.')
        record[node.targets[0].id] = ast.literal_eval(node.value)
    return record

def load(path: pathlib.Path) -> ToolchainConfig:
    """
    Load the toolchain record at `path`, as done when loading the bindings.
    """
    if (record := read_record(path)) is None:
        raise FileNotFoundError(f'The toolchain record {path} does not exist, please run cudart-provision.')
    return ToolchainConfig.from_dict(record)

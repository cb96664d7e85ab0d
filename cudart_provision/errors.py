"""
Errors raised during a provisioning run.

All of them are fatal: the run is aborted and the generated record is removed.
Soft fallbacks (e.g. NVML missing while ``nvidia-smi`` works) are logged as warnings instead.
"""

import pathlib
import typing


class ProvisionError(RuntimeError):
    """
    Base class of all provisioning errors.
    """

class NotFound(ProvisionError):
    """
    A library, an executable or an installation directory could not be found.
    """
    def __init__(self, what: str, searched: typing.Iterable[str | pathlib.Path] = ()) -> None:
        self.what = what
        self.searched = tuple(searched)
        message = f'Could not find {what}'
        if self.searched:
            message += f" (searched {', '.join(map(str, self.searched))})"
        super().__init__(message + '.')

class VersionQueryFailed(ProvisionError):
    """
    The runtime library could not be loaded, or its version could not be queried.
    """

class NoCompatibleCapability(ProvisionError):
    """
    No compute capability is supported by both the toolkit and all local devices.
    """

class DriverError(ProvisionError):
    """
    The driver library could not be loaded, or a CUDA driver API call failed.
    """

class CompilerInvocationFailed(ProvisionError):
    """
    The compiler returned a nonzero exit status, or could not be launched.
    """
    def __init__(self, *, cmd: typing.Sequence[str | pathlib.Path], returncode: int | None, stderr: str | None = None) -> None:
        self.cmd = tuple(cmd)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Compilation command {' '.join(map(str, self.cmd))!r} failed"
        if returncode is not None:
            message += f' with exit status {returncode}'
        if stderr:
            message += f':\n{stderr}'
        super().__init__(message)

import io
import logging
import pathlib
import shutil
import subprocess
import typing

import numpy
import pandas

from cudart_provision.tools.architecture import ComputeCapability


class GPUDetector:
    """
    Detect all available GPUs using `nvidia-smi`.

    This does not require loading the driver library, hence it also serves as a fallback
    when only `nvidia-smi` was found.
    """
    COLUMNS: typing.ClassVar[dict[str, type[str] | numpy.dtype]] = {'uuid': str, 'index': numpy.dtype('int32'), 'name': str, 'compute_cap': str}

    def __init__(self, executable: str | pathlib.Path = 'nvidia-smi') -> None:
        self.executable = executable

    def detect(self, *, enrich: bool = True) -> pandas.DataFrame:
        """
        Query `nvidia-smi` for the list of GPUs.

        :param enrich: Add the ``architecture`` column (e.g. ``sm_86``).
        """
        CMD: tuple[str, ...] = (str(self.executable), '--query-gpu=' + ','.join(self.COLUMNS.keys()), '--format=csv') # pylint: disable=invalid-name

        if shutil.which(str(self.executable)) is None:
            logging.warning(f"'{self.executable}' not found.")
            return pandas.DataFrame(columns = self.COLUMNS.keys()) # type: ignore[arg-type]

        gpus = pandas.read_csv(
            io.StringIO(subprocess.check_output(CMD).decode()),
            sep = ',',
            skipinitialspace = True,
            dtype = self.COLUMNS, # type: ignore[arg-type]
        )
        if not set(self.COLUMNS.keys()).issubset(gpus.columns):
            raise RuntimeError(gpus.columns)
        if enrich:
            gpus.loc[:, 'architecture'] = gpus['compute_cap'].apply(lambda x: ComputeCapability.from_str(x).as_sm)
        return gpus

    def capabilities(self) -> tuple[ComputeCapability, ...]:
        """
        Get the compute capability of each GPU.
        """
        return tuple(ComputeCapability.from_str(x) for x in self.detect(enrich = False)['compute_cap'])

    def count(self) -> int:
        """
        Get the number of available GPUs.
        """
        return len(self.detect(enrich = False))

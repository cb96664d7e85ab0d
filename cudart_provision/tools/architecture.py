import dataclasses
import functools
import logging
import re
import typing

import semantic_version

from cudart_provision.errors import NoCompatibleCapability

@functools.total_ordering
@dataclasses.dataclass(frozen = True, slots = True)
class ComputeCapability:
    """
    Compute capability.

    References:

    * https://docs.nvidia.com/cuda/cuda-c-programming-guide/#compute-capability
    """
    major : int
    minor : int

    CUDA_SUPPORT : typing.ClassVar[dict[int, semantic_version.SimpleSpec]] = {
        10 : semantic_version.SimpleSpec('>=1.0,<7'),
        11 : semantic_version.SimpleSpec('>=1.1,<7'),
        12 : semantic_version.SimpleSpec('>=2.0,<7'),
        13 : semantic_version.SimpleSpec('>=2.0,<7'),
        20 : semantic_version.SimpleSpec('>=3.0,<9'),
        21 : semantic_version.SimpleSpec('>=3.2,<9'),
        30 : semantic_version.SimpleSpec('>=4.2,<11'),
        32 : semantic_version.SimpleSpec('>=6,<11'),
        35 : semantic_version.SimpleSpec('>=5,<12'),
        37 : semantic_version.SimpleSpec('>=6.5,<12'),
        50 : semantic_version.SimpleSpec('>=6,<13'),
        52 : semantic_version.SimpleSpec('>=6.5,<13'),
        53 : semantic_version.SimpleSpec('>=7,<13'),
        60 : semantic_version.SimpleSpec('>=8,<13'),
        61 : semantic_version.SimpleSpec('>=8,<13'),
        62 : semantic_version.SimpleSpec('>=8,<13'),
        70 : semantic_version.SimpleSpec('>=9,<13'),
        72 : semantic_version.SimpleSpec('>=10,<13'),
        75 : semantic_version.SimpleSpec('>=10'),
        80 : semantic_version.SimpleSpec('>=11.2'),
        86 : semantic_version.SimpleSpec('>=11.2'),
        87 : semantic_version.SimpleSpec('>=11.5'),
        89 : semantic_version.SimpleSpec('>=11.8'),
        90 : semantic_version.SimpleSpec('>=11.8'),
        100 : semantic_version.SimpleSpec('>=12.8'),
        103 : semantic_version.SimpleSpec('>=12.9'),
        110 : semantic_version.SimpleSpec('>=13.0'),
        120 : semantic_version.SimpleSpec('>=12.8'),
        121 : semantic_version.SimpleSpec('>=12.9'),
    }
    """
    CUDA Toolkit support.

    References:

    * https://docs.nvidia.com/cuda/cuda-compiler-driver-nvcc/index.html#gpu-feature-list
    * https://docs.nvidia.com/cuda/archive/ (release notes of each toolkit, for dropped architectures)
    """

    @property
    def as_int(self) -> int:
        """
        >>> from cudart_provision.tools.architecture import ComputeCapability
        >>> ComputeCapability(major = 8, minor = 6).as_int
        86
        """
        return self.major * 10 + self.minor

    @property
    def as_sm(self) -> str:
        """
        Convert to CUDA "real architecture" (``sm_``), as passed to ``--gpu-architecture``.

        >>> from cudart_provision.tools.architecture import ComputeCapability
        >>> ComputeCapability(major = 3, minor = 5).as_sm
        'sm_35'
        """
        return f'sm_{self.as_int}'

    def __str__(self) -> str:
        return f'{self.major}.{self.minor}'

    def __eq__(self, other : object) -> bool:
        if isinstance(other, ComputeCapability):
            return (self.major, self.minor) == (other.major, other.minor)
        if isinstance(other, int):
            return self.as_int == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.as_int)

    def __lt__(self, other : typing.Union[int, 'ComputeCapability']) -> bool:
        if isinstance(other, ComputeCapability):
            return (self.major, self.minor) < (other.major, other.minor)
        if isinstance(other, int):
            return self.as_int < other
        return NotImplemented # type: ignore[unreachable]

    @staticmethod
    def from_int(value : int) -> 'ComputeCapability':
        """
        >>> from cudart_provision.tools.architecture import ComputeCapability
        >>> ComputeCapability.from_int(86)
        ComputeCapability(major=8, minor=6)
        """
        major, minor = divmod(value, 10)
        return ComputeCapability(major = major, minor = minor)

    @staticmethod
    def from_str(value : str) -> 'ComputeCapability':
        """
        Parse ``3.5``, ``35`` or ``sm_35``.

        >>> from cudart_provision.tools.architecture import ComputeCapability
        >>> ComputeCapability.from_str('7.5')
        ComputeCapability(major=7, minor=5)
        >>> ComputeCapability.from_str('sm_120')
        ComputeCapability(major=12, minor=0)
        """
        if (matched := re.match(r'^([0-9]+)\.([0-9])$', value.strip())) is not None:
            return ComputeCapability(major = int(matched.group(1)), minor = int(matched.group(2)))
        if (matched := re.match(r'^(?:sm_)?([0-9]+)$', value.strip())) is not None:
            return ComputeCapability.from_int(int(matched.group(1)))
        raise ValueError(f'unsupported compute capability {value!r}')

    def supported(self, version : semantic_version.Version) -> bool:
        """
        Check if the compute capability is supported by the CUDA `version`.

        >>> from semantic_version import Version
        >>> from cudart_provision.tools.architecture import ComputeCapability
        >>> ComputeCapability(major = 7, minor = 0).supported(version = Version('13.0.0'))
        False
        """
        spec = self.CUDA_SUPPORT.get(self.as_int)
        return spec is not None and version in spec

def supported_capabilities(version : semantic_version.Version) -> tuple[ComputeCapability, ...]:
    """
    Get the compute capabilities that the CUDA `version` can generate code for, in increasing order.

    >>> from semantic_version import Version
    >>> from cudart_provision.tools.architecture import supported_capabilities
    >>> [str(cc) for cc in supported_capabilities(Version('8.0.0'))]
    ['2.0', '2.1', '3.0', '3.2', '3.5', '3.7', '5.0', '5.2', '5.3', '6.0', '6.1', '6.2']
    """
    return tuple(
        cc for value in sorted(ComputeCapability.CUDA_SUPPORT)
        if (cc := ComputeCapability.from_int(value)).supported(version = version)
    )

def select_capability(
    local_devices : typing.Iterable[ComputeCapability],
    supported_by_toolchain : typing.Iterable[ComputeCapability],
) -> ComputeCapability:
    """
    Select the richest compute capability that every local device can run.

    The floor is the lowest capability among `local_devices`. The selected capability is the highest
    element of `supported_by_toolchain` that does not exceed the floor.

    >>> from cudart_provision.tools.architecture import ComputeCapability, select_capability
    >>> select_capability(
    ...     local_devices = map(ComputeCapability.from_str, ('3.5', '5.0')),
    ...     supported_by_toolchain = map(ComputeCapability.from_str, ('3.0', '3.5', '5.0', '6.0')),
    ... )
    ComputeCapability(major=3, minor=5)
    """
    devices = tuple(local_devices)
    if not devices:
        raise NoCompatibleCapability('No CUDA device was detected.')

    candidates = tuple(supported_by_toolchain)
    if not candidates:
        raise NoCompatibleCapability('The toolkit does not support any compute capability.')

    floor = min(devices)
    logging.info(f'Lowest compute capability among {len(devices)} device(s) is {floor}.')

    compatible = [cc for cc in candidates if cc <= floor]
    if not compatible:
        raise NoCompatibleCapability(
            f'None of the compute capabilities supported by the toolkit ({", ".join(map(str, sorted(candidates)))}) '
            f'can run on a device of compute capability {floor}.'
        )

    return max(compatible)

"""
Lightweight wrapper around the CUDA driver library, to query the compute capability of local devices.

.. note::

    Only a handful of driver API functions are bound. The library is opened by path (as discovered by
    :py:func:`cudart_provision.tools.driver.find_driver`) rather than by soname.
"""

import ctypes
import dataclasses
import functools
import logging
import pathlib
import typing

from cudart_provision.errors import DriverError
from cudart_provision.tools import runtime
from cudart_provision.tools.architecture import ComputeCapability

CUDA_ERROR_NO_DEVICE : typing.Final[int] = 100

CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR : typing.Final[int] = 75
CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR : typing.Final[int] = 76

@dataclasses.dataclass(frozen = True, eq = True)
class CudaDriverError:
    """
    CUDA driver error code.
    """
    value : int

    @property
    def success(self) -> bool:
        return self.value == 0

    def get(self, libcuda : ctypes.CDLL) -> tuple[str, str]:
        """
        Get error name and string.
        """
        error_msg  = ctypes.c_char_p()
        error_name = ctypes.c_char_p()
        libcuda.cuGetErrorString(self.value, ctypes.byref(error_msg))
        libcuda.cuGetErrorName  (self.value, ctypes.byref(error_name))

        return (
            error_name.value.decode() if error_name.value else 'unknown', # pylint: disable=no-member
            error_msg.value.decode() if error_msg.value else 'unknown error', # pylint: disable=no-member
        )

class Driver:
    """
    Bound driver API functions of an already loaded driver library.
    """
    def __init__(self, libcuda : ctypes.CDLL) -> None:
        self.libcuda = libcuda

    def check_status(self, *, status : CudaDriverError, info : typing.Any) -> None:
        """
        Check that `status` is successful, raise otherwise.
        """
        if not status.success:
            error_name, error_msg = status.get(libcuda = self.libcuda)
            raise DriverError(
                f"{info} failed with error code {status.value} ({error_name}): {error_msg}",
            )

    def check_api_call(self, *, func : str) -> typing.Any:
        """
        Wrap CUDA driver API call `func` to raise an exception if the call is not successful.
        """
        handle = getattr(self.libcuda, func)
        @functools.wraps(handle)
        def wrapper(*args, **kwargs):
            status = handle(*args, **kwargs)
            self.check_status(status = CudaDriverError(value = status), info = func)
            return status
        return wrapper

    def initialize(self, flags : int = 0) -> bool:
        """
        Wrap ``cuInit``.

        :return: :py:obj:`False` if the driver reports that there is no device.
        """
        status = CudaDriverError(value = self.libcuda.cuInit(flags))
        if status.value == CUDA_ERROR_NO_DEVICE:
            return False
        self.check_status(status = status, info = 'cuInit')
        return True

    @functools.cached_property
    def device_count(self) -> int:
        """
        Wrap ``cuDeviceGetCount``.
        """
        count = ctypes.c_int()
        self.check_api_call(func = 'cuDeviceGetCount')(ctypes.byref(count))
        return count.value

    def get_device_attribute(self, *, attribute : int, device : int) -> int:
        """
        Retrieve an integer attribute of `device` (an ordinal).
        """
        handle = ctypes.c_int()
        self.check_api_call(func = 'cuDeviceGet')(ctypes.byref(handle), ctypes.c_int(device))

        value = ctypes.c_int()
        self.check_api_call(func = 'cuDeviceGetAttribute')(ctypes.byref(value), ctypes.c_int(attribute), handle)
        return value.value

    def get_device_compute_capability(self, *, device : int) -> ComputeCapability:
        """
        Get compute capability of `device`.
        """
        return ComputeCapability(
            major = self.get_device_attribute(attribute = CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MAJOR, device = device),
            minor = self.get_device_attribute(attribute = CU_DEVICE_ATTRIBUTE_COMPUTE_CAPABILITY_MINOR, device = device),
        )

def local_capabilities(libcuda_path : str | pathlib.Path) -> tuple[ComputeCapability, ...]:
    """
    Get the compute capability of every device visible through the driver library at `libcuda_path`.
    """
    try:
        with runtime.load_library(libcuda_path) as libcuda:
            driver = Driver(libcuda = libcuda)

            if not driver.initialize():
                logging.warning('The CUDA driver reports that no device is available.')
                return ()

            capabilities = tuple(driver.get_device_compute_capability(device = device) for device in range(driver.device_count))
    except OSError as error:
        raise DriverError(f'Could not load {libcuda_path}: {error}') from error

    for device, cc in enumerate(capabilities):
        logging.info(f'Device {device} has compute capability {cc}.')

    return capabilities

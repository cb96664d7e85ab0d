"""
Discovery of CUDA components.

This module provides:
- architecture: Compute capabilities and their support by CUDA toolkits
- runtime: Loading the runtime library and querying its version
- device_properties: Compute capabilities of the local devices
- driver: Driver library, NVML and ``nvidia-smi`` discovery
- toolkit: Toolkit, runtime library and compiler toolchain discovery
"""

__all__ = ()

"""
cudart-provision: build-time provisioning of the CUDA runtime bindings.

A provisioning run:
- locates the CUDA toolkit, the runtime library and the driver utilities
- selects the richest compute capability supported by every local device
- compiles the native shim sources with ``nvcc``
- records the discovered toolchain in a generated file read at load time

Key modules:
- cudart_provision.provisioner: The provisioning run
- cudart_provision.config: The generated toolchain record
- cudart_provision.tools: Discovery of CUDA components
- cudart_provision.utils: Search, environment and subprocess helpers
"""

__version__ = "0.1.0"

__all__ = (
    '__version__',
)

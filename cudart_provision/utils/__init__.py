"""
Utility functions for provisioning.

This module provides utilities for:
- Environment variable configuration
- Library and executable search
- Subprocess helpers
- GPU detection with nvidia-smi
- Rendering tables with rich
"""

__all__ = ()

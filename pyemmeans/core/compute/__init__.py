"""
Shared compute infrastructure for pyemmeans.

Submodules:
    timing: Execution timing utilities
"""

from pyemmeans.core.compute.timing import Timer

__all__ = [
    "Timer",
]

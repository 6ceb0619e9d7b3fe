"""Native Rebuild - rebuild native addons against a custom runtime ABI.

This package walks an installed dependency tree, finds packages that ship
compiled native addons, and rebuilds them for a target runtime version,
CPU architecture and build configuration.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

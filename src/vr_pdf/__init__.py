"""
vr-pdf package.

Splits stereo ("VR") page scans into per-eye pages and rebuilds them as one
PDF. The command-line interface lives in cli.py.
"""

__all__ = ["__version__"]

# Keep a simple version string for manifests and debugging.
__version__ = "0.1.0"

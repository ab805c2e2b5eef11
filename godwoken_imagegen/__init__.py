"""Godwoken Image Generator - incremental prebuilt image pipeline.

This package orchestrates the native-code components bundled into the
Godwoken prebuilt image: it resolves component versions, reuses or
rebuilds artifacts by content hash, assembles the tagged image and hands
its reference to the integration-test runner.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

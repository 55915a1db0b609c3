"""Container Exporter - build runnable container images from Habitat packages.

This package resolves package identifiers against a depot, assembles a root
filesystem, builds an image with a pluggable container engine, and optionally
publishes it to a registry.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

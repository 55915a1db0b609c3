"""Image build module.

This module handles:
- Build specification resolution
- Root filesystem assembly and build workspaces
- Naming policy, container engines and built images
"""

from container_exporter.builds.buildroot import BuildRoot
from container_exporter.builds.engine import Engine, get_engine
from container_exporter.builds.image import ContainerImage
from container_exporter.builds.naming import NamingPolicy
from container_exporter.builds.rootfs import RootfsAssembler
from container_exporter.builds.spec import BuildSpec, ResolvedBuildSpec

__all__ = [
    "BuildRoot",
    "BuildSpec",
    "ContainerImage",
    "Engine",
    "NamingPolicy",
    "ResolvedBuildSpec",
    "RootfsAssembler",
    "get_engine",
]

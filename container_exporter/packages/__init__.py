"""Package resolution module.

This module handles:
- Parsing package identifiers
- Querying the depot for releases and dependencies
- Reading and unpacking .hart artifacts
"""

from container_exporter.packages.depot import DepotClient, PackageInfo
from container_exporter.packages.ident import PackageIdent

__all__ = ["DepotClient", "PackageIdent", "PackageInfo"]

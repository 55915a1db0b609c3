"""Registry authentication module.

This module handles:
- Resolving credentials for Amazon ECR, Azure and Docker registries
"""

from container_exporter.registry.credentials import (
    RegistryCredential,
    resolve_credential,
)

__all__ = ["RegistryCredential", "resolve_credential"]

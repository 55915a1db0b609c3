"""Registry credential resolution.

This module handles:
- Exchanging AWS access keys for an ECR authorization token
- Encoding username and password for basic-auth registries
- Dispatching on the registry kind

Credentials live in memory only. Their ``repr`` never shows the token.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from container_exporter.errors import CredentialError
from container_exporter.types import RegistryType

if TYPE_CHECKING:
    from container_exporter.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ECR_REGION = "us-west-2"

EcrClientFactory = Callable[[str, str, str], Any]


@dataclass(frozen=True)
class RegistryCredential:
    """Authentication material for one registry kind.

    Attributes:
        token: Base64 ``user:password`` token understood by engine auth files.
        registry_type: Registry kind the token was derived for.
    """

    token: str = field(repr=False)
    registry_type: RegistryType


class CredentialResolver(Protocol):
    """Turns a username and password into a registry credential."""

    def resolve(self, username: str, password: str) -> RegistryCredential: ...


class BasicCredentialResolver:
    """Basic-auth registries (Docker Hub, Azure and compatible).

    Args:
        registry_type: Registry kind recorded on the credential.
    """

    def __init__(self, registry_type: RegistryType = RegistryType.DOCKER) -> None:
        self.registry_type = registry_type

    def resolve(self, username: str, password: str) -> RegistryCredential:
        """Encode ``username:password`` without any network call.

        Raises:
            CredentialError: If the username or password is empty.
        """
        if not username or not password:
            raise CredentialError(
                f"A username and password are required for "
                f"{self.registry_type.value} registries",
                code="missing_credentials",
            )
        token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        return RegistryCredential(token=token, registry_type=self.registry_type)


def _default_ecr_client(region: str, access_key_id: str, secret_key: str) -> Any:
    session = boto3.Session(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_key,
    )
    return session.client("ecr", region_name=region)


class AmazonCredentialResolver:
    """Amazon ECR token exchange.

    The username and password are used as an AWS access key pair; one
    ``GetAuthorizationToken`` call trades them for a short-lived token.

    Args:
        region: AWS region of the registry.
        client_factory: Callable creating the ECR client from
            ``(region, access_key_id, secret_access_key)``.
    """

    registry_type = RegistryType.AMAZON

    def __init__(
        self,
        region: str = DEFAULT_ECR_REGION,
        client_factory: EcrClientFactory | None = None,
    ) -> None:
        self.region = region
        self.client_factory = client_factory or _default_ecr_client

    def resolve(self, username: str, password: str) -> RegistryCredential:
        """Exchange the access key pair for an ECR token.

        Raises:
            CredentialError: If the keys are missing, the call fails or no
                token is returned.
        """
        if not username or not password:
            raise CredentialError(
                "An access key ID and secret access key are required for "
                "amazon registries",
                code="missing_credentials",
            )

        logger.info("Requesting ECR authorization token in %s", self.region)
        try:
            client = self.client_factory(self.region, username, password)
            response = client.get_authorization_token()
        except ClientError as e:
            raise CredentialError(
                f"ECR rejected the token request: {e}", code="token_rejected"
            ) from e
        except BotoCoreError as e:
            raise CredentialError(
                f"ECR token request failed: {e}", code="token_request_failed"
            ) from e

        auth_data = response.get("authorizationData") or []
        token = auth_data[0].get("authorizationToken") if auth_data else None
        if not token:
            raise CredentialError(
                "ECR returned no authorization token", code="no_token"
            )
        return RegistryCredential(token=token, registry_type=self.registry_type)


def get_resolver(
    registry_type: RegistryType,
    settings: Settings | None = None,
) -> CredentialResolver:
    """Return the resolver for a registry kind.

    Args:
        registry_type: Registry kind.
        settings: Optional settings providing the ECR region.

    Returns:
        Resolver instance.
    """
    if registry_type == RegistryType.AMAZON:
        region = settings.ecr_region if settings else DEFAULT_ECR_REGION
        return AmazonCredentialResolver(region=region)
    return BasicCredentialResolver(registry_type)


def resolve_credential(
    registry_type: RegistryType,
    username: str,
    password: str,
    settings: Settings | None = None,
) -> RegistryCredential:
    """Resolve a credential for a registry kind.

    Args:
        registry_type: Registry kind.
        username: Username or AWS access key ID.
        password: Password or AWS secret access key.
        settings: Optional settings.

    Returns:
        RegistryCredential instance.

    Raises:
        CredentialError: If the credential cannot be resolved.
    """
    return get_resolver(registry_type, settings).resolve(username, password)


__all__ = [
    "AmazonCredentialResolver",
    "BasicCredentialResolver",
    "CredentialResolver",
    "RegistryCredential",
    "get_resolver",
    "resolve_credential",
]

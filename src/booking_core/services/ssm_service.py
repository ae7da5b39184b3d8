"""SSM Parameter Store service for secret retrieval.

Secrets (processor API key, webhook signing secret, admin code hash and salt,
reconciliation trigger secret) live under ``/booking/{environment}/...``.
For local runs a secret can be provided through an environment variable
named after the parameter (``stripe/secret_key`` -> ``STRIPE_SECRET_KEY``).
"""

import logging
import os
from functools import lru_cache
from typing import ClassVar

import boto3
from botocore.exceptions import ClientError

from booking_core.config import get_settings

logger = logging.getLogger(__name__)


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""

    pass


class SSMService:
    """Service for retrieving secrets from AWS SSM Parameter Store.

    Features:
    - Retrieves SecureString parameters with automatic decryption
    - In-process caching to avoid repeated API calls
    - Environment-aware parameter paths via get_secret()

    Usage:
        ssm = get_ssm_service()
        stripe_key = ssm.get_secret("stripe/secret_key")
    """

    _cache: ClassVar[dict[str, str]] = {}

    def __init__(self, environment: str | None = None) -> None:
        self._environment = environment or get_settings().environment
        self._client = boto3.client("ssm")

    def parameter_path(self, name: str) -> str:
        return f"/booking/{self._environment}/{name}"

    def get_secret(self, name: str) -> str:
        """Resolve a named secret for the current environment.

        Args:
            name: Secret name relative to the environment path (e.g. "stripe/secret_key")

        Returns:
            The secret value.

        Raises:
            SSMServiceError: If the secret cannot be resolved.
        """
        override = os.getenv(name.replace("/", "_").replace("-", "_").upper())
        if override:
            return override
        return self.get_parameter(self.parameter_path(name))

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a parameter value from SSM Parameter Store.

        Args:
            name: Full parameter path (e.g., "/booking/dev/stripe/secret_key")
            use_cache: Whether to use cached value if available (default: True)

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If parameter cannot be retrieved.
        """
        if use_cache and name in self._cache:
            logger.debug("SSM cache hit for %s", name)
            return self._cache[name]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
            value: str = response["Parameter"]["Value"]
            self._cache[name] = value
            return value

        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(f"Failed to retrieve SSM parameter {name}: {e}") from e

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("SSM parameter cache cleared")


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance (singleton pattern).

    This function uses lru_cache to ensure only one instance is created,
    even across multiple imports, so the parameter cache is shared too.

    Returns:
        SSMService: Shared service instance.
    """
    return SSMService()

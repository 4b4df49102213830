"""Bucket credentials stored as Kubernetes secrets."""

import base64
import binascii
import os
import ssl
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from restore_agent.core.errors import CredentialError
from restore_agent.core.logging import get_logger

logger = get_logger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


@runtime_checkable
class SecretSource(Protocol):
    """Protocol for anything that can hand out bucket credentials."""

    async def get_credentials(self, secret_name: str) -> dict[str, bytes]:
        """Fetch the data of a secret.

        Args:
            secret_name: Name of the secret

        Returns:
            Secret data, values as raw bytes

        Raises:
            CredentialError: If the secret cannot be fetched
        """
        ...


class KubernetesSecretSource:
    """Reads secrets from the Kubernetes API server of the cluster we run in."""

    def __init__(
        self,
        api_url: str,
        namespace: str,
        token: str,
        ssl_context: ssl.SSLContext | None = None,
        attempts: int = 3,
    ) -> None:
        """Initialize the secret source.

        Args:
            api_url: Base URL of the API server
            namespace: Namespace holding the secrets
            token: Bearer token of the service account
            ssl_context: TLS context trusting the cluster CA
            attempts: Connection attempts before giving up
        """
        self.api_url = api_url.rstrip("/")
        self.namespace = namespace
        self._token = token
        self._ssl: ssl.SSLContext | bool = ssl_context if ssl_context is not None else True
        self._attempts = attempts

    @classmethod
    def from_environment(
        cls, service_account_dir: Path = SERVICE_ACCOUNT_DIR
    ) -> "KubernetesSecretSource":
        """Build a source from the in-cluster service account.

        Raises:
            CredentialError: If not running inside a cluster
        """
        host = os.getenv("KUBERNETES_SERVICE_HOST")
        port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            raise CredentialError("KUBERNETES_SERVICE_HOST is not set, not running in a cluster")

        try:
            token = (service_account_dir / "token").read_text().strip()
            namespace = (service_account_dir / "namespace").read_text().strip()
            ssl_context = ssl.create_default_context(cafile=str(service_account_dir / "ca.crt"))
        except OSError as e:
            raise CredentialError(f"Failed to read service account: {e}") from e

        if ":" in host:
            host = f"[{host}]"

        return cls(
            api_url=f"https://{host}:{port}",
            namespace=namespace,
            token=token,
            ssl_context=ssl_context,
        )

    async def get_credentials(self, secret_name: str) -> dict[str, bytes]:
        """Fetch and decode the data of a secret.

        An empty name means the bucket needs no explicit credentials.

        Raises:
            CredentialError: If the secret cannot be fetched or decoded
        """
        if not secret_name:
            logger.info("No secret name given, using ambient bucket credentials")
            return {}

        try:
            body = await self._with_retry(secret_name)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise CredentialError(f"Failed to fetch secret '{secret_name}': {e}") from e

        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise CredentialError(f"Secret '{secret_name}' has malformed data")

        try:
            return {key: base64.b64decode(value, validate=True) for key, value in data.items()}
        except (binascii.Error, TypeError) as e:
            raise CredentialError(f"Secret '{secret_name}' holds invalid base64: {e}") from e

    async def _with_retry(self, secret_name: str) -> dict[str, Any]:
        """Fetch a secret, retrying connection failures only.

        Raises:
            aiohttp.ClientError: If every attempt fails to connect
            CredentialError: If the API server rejects the request
        """
        try:
            async for attempt in AsyncRetrying(
                wait=wait_exponential(multiplier=1, min=1, max=10),
                stop=stop_after_attempt(self._attempts),
                retry=retry_if_exception_type(aiohttp.ClientConnectionError),
                reraise=True,
            ):
                with attempt:
                    return await self._request(secret_name)
        except RetryError as e:
            if e.last_attempt.exception():
                raise e.last_attempt.exception() from e
            raise

        # This should never be reached
        raise RuntimeError("Unexpected retry error")

    async def _request(self, secret_name: str) -> dict[str, Any]:
        """GET a secret from the API server.

        Raises:
            CredentialError: On a non-200 response or a non-object body
        """
        url = f"{self.api_url}/api/v1/namespaces/{self.namespace}/secrets/{secret_name}"
        headers = {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}
        timeout = aiohttp.ClientTimeout(total=30)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=headers, ssl=self._ssl) as response:
                if response.status != 200:
                    text = await response.text()
                    raise CredentialError(
                        f"Kubernetes API returned {response.status} for secret "
                        f"'{secret_name}': {text.strip()}"
                    )
                body = await response.json()

        if not isinstance(body, dict):
            raise CredentialError(f"Unexpected response type for secret '{secret_name}'")
        return body

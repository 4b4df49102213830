"""Restore command implementation."""

from restore_agent.config.loader import load_config
from restore_agent.config.models import RestoreOverrides
from restore_agent.core.agent import RestoreAgent, RestoreOutcome
from restore_agent.core.logging import get_logger
from restore_agent.secrets.kubernetes import KubernetesSecretSource, SecretSource
from restore_agent.storage.factory import StoreRegistry, default_registry

logger = get_logger(__name__)


async def run_restore(
    config_file: str,
    overrides: RestoreOverrides,
    stores: StoreRegistry | None = None,
    secrets: SecretSource | None = None,
) -> RestoreOutcome:
    """Execute the restore command for this worker.

    Args:
        config_file: Path to configuration file
        overrides: Configuration overrides from CLI flags
        stores: Bucket driver registry, the built-in drivers by default
        secrets: Credential source, the in-cluster Kubernetes API by default

    Returns:
        The outcome of the restore

    Raises:
        RestoreError: If the restore fails
        ValueError: If the configuration is invalid
    """
    logger.info("Starting restore agent...")

    config = load_config(config_file=config_file, overrides=overrides)
    logger.info(
        "Configuration loaded",
        bucket=config.bucket,
        destination=config.destination,
        hostname=config.hostname,
        restore_id=config.restore_id or "<none>",
    )

    if stores is None:
        stores = default_registry()
    if secrets is None:
        secrets = _InClusterSecrets()

    agent = RestoreAgent(config, stores, secrets)
    return await agent.run()


class _InClusterSecrets:
    """Secret source that only looks for the cluster once a secret is needed.

    Buckets without a secret rely on ambient credentials and never touch the
    Kubernetes API, and a worker that already restored never gets this far.
    """

    async def get_credentials(self, secret_name: str) -> dict[str, bytes]:
        if not secret_name:
            return {}
        return await KubernetesSecretSource.from_environment().get_credentials(secret_name)

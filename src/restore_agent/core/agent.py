"""Restore agent coordinating one worker's restore."""

import asyncio
import contextlib
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import TypeVar

from restore_agent.config.models import RestoreConfig
from restore_agent.core.errors import OrdinalOutOfRange
from restore_agent.core.extract import extract_archive
from restore_agent.core.identity import parse_worker_name
from restore_agent.core.locator import find_backup_keys
from restore_agent.core.locks import CompletionLock
from restore_agent.core.logging import get_logger
from restore_agent.core.reconcile import apply_plan, plan_restore
from restore_agent.secrets.kubernetes import SecretSource
from restore_agent.storage.base import BlobStore
from restore_agent.storage.factory import StoreRegistry

logger = get_logger(__name__)

T = TypeVar("T")


class RestoreOutcome(str, Enum):
    """How a restore run ended."""

    RESTORED = "restored"
    ALREADY_RESTORED = "already-restored"


async def run_blocking(func: Callable[[threading.Event], T]) -> T:
    """Run blocking work in a thread that can be told to stop.

    The function receives a cancel event. If the awaiting task is cancelled
    (directly or by a deadline) the event is set and the thread is waited
    for, so it can release its handles before the cancellation propagates.

    Args:
        func: Blocking function taking the cancel event

    Returns:
        The function's result
    """
    cancel = threading.Event()
    task = asyncio.ensure_future(asyncio.to_thread(func, cancel))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        cancel.set()
        # The worker raises RestoreCancelled (or finishes); either way the
        # outer cancellation is what the caller sees
        with contextlib.suppress(Exception):
            await task
        raise


class RestoreAgent:
    """Restores the shard of one worker from a bucket of archived backups.

    Each worker acts only on its own ordinal. The completion lock makes
    repeated runs safe: once a worker restored for a restore id, later runs
    return without contacting the bucket.
    """

    def __init__(
        self,
        config: RestoreConfig,
        stores: StoreRegistry,
        secrets: SecretSource,
    ) -> None:
        """Initialize the agent.

        Args:
            config: Restore configuration
            stores: Registry used to open the bucket
            secrets: Source of the bucket credentials
        """
        self.config = config
        self.stores = stores
        self.secrets = secrets
        self.destination = Path(config.destination)

    async def run(self) -> RestoreOutcome:
        """Run the restore, honouring the configured deadline.

        Returns:
            The outcome of the restore

        Raises:
            RestoreError: If any step fails
            TimeoutError: If the deadline passes first
        """
        async with asyncio.timeout(self.config.timeout_seconds):
            return await self._run()

    async def _run(self) -> RestoreOutcome:
        worker = parse_worker_name(self.config.hostname)
        logger.info("Restore agent ID", ordinal=worker.ordinal, hostname=self.config.hostname)

        lock = CompletionLock(self.destination, self.config.restore_id, worker.ordinal)
        if lock.exists():
            logger.info("Restore lock exists, exiting", path=str(lock.path))
            return RestoreOutcome.ALREADY_RESTORED

        logger.info("Reading secret", secret=self.config.secret_name)
        credentials = await self.secrets.get_credentials(self.config.secret_name)

        store = self.stores.open(self.config.bucket, credentials)
        try:
            logger.info("Starting download", destination=str(self.destination))
            await run_blocking(lambda cancel: self._download(store, worker.ordinal, cancel))
        finally:
            store.close()

        await run_blocking(lambda cancel: lock.commit())

        logger.info("Restore successful")
        return RestoreOutcome.RESTORED

    def _download(self, store: BlobStore, ordinal: int, cancel: threading.Event) -> None:
        """Pick this worker's archive, clear what it supersedes and extract it.

        Raises:
            RestoreError: If any step fails
        """
        keys = find_backup_keys(store, cancel)
        if ordinal >= len(keys):
            raise OrdinalOutOfRange(ordinal, len(keys))

        plan = plan_restore(self.destination, ordinal, keys)
        apply_plan(plan)

        logger.info("Restoring", key=plan.key)
        extract_archive(store, plan.key, self.destination, cancel)

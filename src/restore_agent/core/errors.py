"""Error taxonomy for the restore agent.

Every error aborts the whole restore and surfaces as a process failure. None
of them are retried internally: re-running the process is the retry, and the
completion lock keeps that safe.
"""


class RestoreError(Exception):
    """Base class for all restore failures."""


class InvalidIdentity(RestoreError):
    """Raised when a worker name does not follow the `<base-name>-<ordinal>` grammar.

    Attributes:
        name: The worker name that failed to parse
        reason: Which part of the grammar was violated
    """

    def __init__(self, name: str, reason: str) -> None:
        """Initialize InvalidIdentity.

        Args:
            name: The worker name that failed to parse
            reason: Which part of the grammar was violated
        """
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid worker name {name!r}: {reason}")


class NoArchivesFound(RestoreError):
    """Raised when the bucket holds no archived backup files."""


class OrdinalOutOfRange(RestoreError):
    """Raised when a worker ordinal has no archive to restore from.

    Attributes:
        ordinal: The worker ordinal
        count: Number of archives available
    """

    def __init__(self, ordinal: int, count: int) -> None:
        self.ordinal = ordinal
        self.count = count
        super().__init__(
            f"Member index {ordinal} is greater than number of archived backup files {count}"
        )


class MismatchedBackupCount(RestoreError):
    """Raised when local recovery folders and the archive set describe different clusters.

    Attributes:
        local: Number of local recovery folders
        remote: Number of archived backup files
    """

    def __init__(self, local: int, remote: int) -> None:
        self.local = local
        self.remote = remote
        super().__init__(
            f"Mismatching local recovery folder count {local} "
            f"and archived backup file count {remote}"
        )


class RestoreIOError(RestoreError):
    """Raised on any filesystem, stream or decompression fault."""


class CredentialError(RestoreError):
    """Raised when bucket credentials cannot be fetched."""


class StoreError(RestoreError):
    """Raised when the remote object store cannot be opened, listed or read."""


class RestoreCancelled(RestoreError):
    """Raised by a blocking operation that observed a cancellation request."""

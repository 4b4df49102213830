"""Worker identity parsing.

Workers are named the way a StatefulSet names its pods: a DNS label
(RFC 1123) followed by a dash and the decimal ordinal, e.g. ``cluster-3``.
"""

import re
from dataclasses import dataclass

from restore_agent.core.errors import InvalidIdentity

WORKER_NAME_PATTERN = re.compile(r"^(?P<base>[a-z0-9]([-a-z0-9]*[a-z0-9])?)-(?P<ordinal>[0-9]+)$")

_BASE_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


@dataclass(frozen=True)
class WorkerName:
    """A parsed worker name.

    Attributes:
        base_name: The DNS label shared by all workers of the cluster
        ordinal: Zero-based shard index of this worker
    """

    base_name: str
    ordinal: int

    def __str__(self) -> str:
        return f"{self.base_name}-{self.ordinal}"


def parse_worker_name(name: str) -> WorkerName:
    """Parse a worker name into its base name and ordinal.

    Args:
        name: Worker name, usually the pod hostname

    Returns:
        Parsed worker name

    Raises:
        InvalidIdentity: If the name does not match the grammar
    """
    if not name:
        raise InvalidIdentity(name, "name is empty")

    match = WORKER_NAME_PATTERN.fullmatch(name)
    if match is not None:
        return WorkerName(base_name=match.group("base"), ordinal=int(match.group("ordinal")))

    # Work out which half is broken so the error says something useful
    base, sep, suffix = name.rpartition("-")
    if not sep or not suffix.isdecimal() or not suffix.isascii():
        raise InvalidIdentity(name, "missing numeric ordinal suffix")
    if not _BASE_NAME_PATTERN.fullmatch(base):
        raise InvalidIdentity(name, f"base name {base!r} is not a valid DNS label")
    raise InvalidIdentity(name, "does not follow the <base-name>-<ordinal> scheme")


def parse_ordinal(name: str) -> int:
    """Return the ordinal encoded in a worker name.

    Raises:
        InvalidIdentity: If the name does not match the grammar
    """
    return parse_worker_name(name).ordinal

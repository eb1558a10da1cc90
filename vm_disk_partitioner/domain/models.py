"""Domain model for partition reconciliation.

Desired and existing partition sequences are transient: they are rebuilt
from the device on every call and never cached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ==============================================================================
# Partition Domain
# ==============================================================================


class PartitionType(Enum):
    """Partition content type."""

    LINUX = "linux"
    SWAP = "swap"
    EMPTY = "empty"
    EFI = "efi"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DesiredPartition:
    """One element of the requested on-disk layout, in on-disk order.

    A size of 0 on the last element means "use the rest of the disk".
    """

    type: PartitionType = PartitionType.LINUX
    size_in_bytes: int = 0
    name_prefix: str = ""


@dataclass(frozen=True)
class ExistingPartition:
    """A partition probed from a device's table."""

    index: int  # 1-based slot assigned by the partitioning tool
    start_in_bytes: int
    end_in_bytes: int
    size_in_bytes: int
    type: PartitionType = PartitionType.UNKNOWN
    name: str = ""  # GPT partition label


@dataclass(frozen=True)
class Device:
    """A block device and its full size in bytes."""

    path: str
    full_size_in_bytes: int


@dataclass(frozen=True)
class PartedListing:
    """Parsed ``parted -m <device> unit B print`` output."""

    device: Device
    table_type: str
    partitions: list[ExistingPartition] = field(default_factory=list)


@dataclass(frozen=True)
class SfdiskEntry:
    """One partition line of an ``sfdisk -d`` dump."""

    partition_path: str
    index: int
    type: PartitionType
    type_id: str
    start_sector: Optional[int] = None
    size_sectors: Optional[int] = None


# ==============================================================================
# Reconciliation Outcome
# ==============================================================================


class PartitionStatus(Enum):
    """Outcome of a partition() call that did not raise."""

    CONVERGED = "converged"  # already matched, probe only
    MUTATED = "mutated"
    GPT_CONFLICT = "gpt_conflict"  # sfdisk refused a GPT disk; nothing written


@dataclass(frozen=True)
class PartitionResult:
    status: PartitionStatus
    device_path: str
    backend: str

    @property
    def converged(self) -> bool:
        return self.status is PartitionStatus.CONVERGED

    @property
    def mutated(self) -> bool:
        return self.status is PartitionStatus.MUTATED

    @property
    def gpt_conflict(self) -> bool:
        return self.status is PartitionStatus.GPT_CONFLICT


class BackendKind(Enum):
    """Partitioning backend chosen for a persistent disk."""

    SFDISK = "sfdisk"
    PARTED = "parted"

"""Shared partitioner contract and byte arithmetic."""

from __future__ import annotations

from typing import Protocol, Sequence

from vm_disk_partitioner.domain.models import (
    DesiredPartition,
    ExistingPartition,
    PartitionResult,
)


MIB = 1024 * 1024
KIB = 1024

# Name prefix given to partitions created without an explicit one.
AGENT_PARTITION_NAME_PREFIX = "agent-partition"


class Partitioner(Protocol):
    """Capability shared by every partitioning backend."""

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        ...

    def get_device_size_in_bytes(self, device_path: str) -> int:
        ...

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        ...

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        ...


def align_up(offset: int, alignment: int = MIB) -> int:
    """Round ``offset`` up to the next multiple of ``alignment``."""
    if alignment <= 0:
        return offset
    return offset + ((alignment - offset % alignment) % alignment)


def within_delta(left: int, right: int, delta: int) -> bool:
    return abs(left - right) <= delta


def significantly_smaller_than(size: int, other: int, delta: int) -> bool:
    return other - size > delta


def bytes_to_mib(size_in_bytes: int) -> int:
    return size_in_bytes // MIB


def kib_to_bytes(size_in_kib: int) -> int:
    return size_in_kib * KIB


def partition_device_path(device_path: str, index: int) -> str:
    """Device node of partition ``index`` (``/dev/sda1``, ``/dev/nvme0n1p1``)."""
    suffix = "p" if device_path[-1].isdigit() else ""
    return f"{device_path}{suffix}{index}"

"""Partitioning of the system disk after its boot layout.

The root disk already carries the root partition, preceded by an EFI
partition on EFI-booted systems. New partitions are appended after the
existing ones, each start rounded up to the alignment boundary (1 MiB by
default) for optimal reads on HDDs and erasure on SSDs.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.domain.models import (
    DesiredPartition,
    ExistingPartition,
    PartitionResult,
    PartitionStatus,
    PartitionType,
)
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import CommandRunner, rescan_device
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    MissingFirstPartitionError,
    PartitionOperationError,
    UnsupportedOperationError,
)

from .base import align_up, within_delta
from .parted import PartedPartitioner


def boot_partition_count(existing: Sequence[ExistingPartition]) -> int:
    """Number of leading partitions that make up the boot layout."""
    if existing and existing[0].type is PartitionType.EFI:
        return 2
    return 1


class RootDevicePartitioner:
    name = "root"

    def __init__(
        self,
        runner: CommandRunner,
        delta_in_bytes: Optional[int] = None,
        config: Optional[PartitionerConfig] = None,
        parted: Optional[PartedPartitioner] = None,
    ):
        self.runner = runner
        self.config = config or PartitionerConfig()
        self.delta_in_bytes = (
            self.config.root_delta_bytes if delta_in_bytes is None else delta_in_bytes
        )
        self.parted = parted or PartedPartitioner(runner, self.config)
        self.log = LoggerFactory.for_partitioner("RootDevicePartitioner")

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        existing, device_full_size_in_bytes = self.get_partitions(device_path)
        self.log.debug(f"Current partitions: {existing!r}")

        if not existing:
            raise MissingFirstPartitionError(device_path)

        if self._partitions_match(existing[boot_partition_count(existing) :], partitions):
            self.log.info("Partitions already match, skipping partitioning")
            return PartitionResult(PartitionStatus.CONVERGED, device_path, self.name)

        alignment = self.config.alignment_bytes
        last_byte = device_full_size_in_bytes - 1
        partition_start = align_up(existing[-1].end_in_bytes + 1, alignment)

        for index, partition in enumerate(partitions):
            if partition_start > last_byte:
                raise PartitionOperationError(
                    f"Partitioning disk `{device_path}': no space left for partition {index}",
                    device=device_path,
                )

            partition_end = partition_start + partition.size_in_bytes - 1
            if partition_end > last_byte:
                partition_end = last_byte
                self.log.info(
                    f"Partition {index} would be larger than remaining space. "
                    f"Reducing size to {partition_end - partition_start + 1}B"
                )

            self.log.info(
                f"Creating partition {index} with start {partition_start}B "
                f"and end {partition_end}B"
            )
            try:
                self.runner.run_command(
                    [
                        "parted",
                        "-s",
                        device_path,
                        "unit",
                        "B",
                        "mkpart",
                        "primary",
                        str(partition_start),
                        str(partition_end),
                    ]
                )
            except CommandExecutionError as error:
                raise PartitionOperationError(
                    f"Partitioning disk `{device_path}'", device=device_path
                ) from error

            partition_start = align_up(partition_end + 1, alignment)

        rescan_device(self.runner, device_path)
        return PartitionResult(PartitionStatus.MUTATED, device_path, self.name)

    def get_device_size_in_bytes(self, device_path: str) -> int:
        """Bytes left on the disk after the boot layout."""
        self.log.debug("Getting size of disk remaining after first partition")
        existing, device_full_size_in_bytes = self.get_partitions(device_path)
        if not existing:
            raise MissingFirstPartitionError(device_path)

        boot_layout = existing[: boot_partition_count(existing)]
        return device_full_size_in_bytes - boot_layout[-1].end_in_bytes - 1

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        return self.parted.get_partitions(device_path)

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        raise UnsupportedOperationError("Removing partitions", "the root device partitioner")

    def single_partition_needs_resize(
        self, device_path: str, expected_type: PartitionType
    ) -> bool:
        raise UnsupportedOperationError("Resizing the system disk", "the root device partitioner")

    def resize_single_partition(self, device_path: str) -> None:
        raise UnsupportedOperationError("Resizing the system disk", "the root device partitioner")

    def _partitions_match(
        self,
        existing: Sequence[ExistingPartition],
        partitions: Sequence[DesiredPartition],
    ) -> bool:
        if len(existing) != len(partitions):
            return False

        for partition, existing_partition in zip(partitions, existing):
            if not within_delta(
                partition.size_in_bytes, existing_partition.size_in_bytes, self.delta_in_bytes
            ):
                return False

        return True

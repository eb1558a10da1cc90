"""Ephemeral disk partitioning keyed on the agent identity.

Partition labels on the ephemeral disk start with the agent id. When the
labels no longer carry the current id the disk belongs to a previous
identity: every partition is removed, a GPT label is ensured and the full
layout is recreated through the parted backend.
"""

from __future__ import annotations

from typing import Sequence

from vm_disk_partitioner.domain.models import (
    DesiredPartition,
    ExistingPartition,
    PartitionResult,
    PartitionStatus,
)
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import CommandRunner
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    PartitionOperationError,
)

from .parted import PartedPartitioner, parted_print_command


class EphemeralDevicePartitioner:
    name = "ephemeral"

    def __init__(self, parted: PartedPartitioner, runner: CommandRunner):
        self.parted = parted
        self.runner = runner
        self.log = LoggerFactory.for_partitioner("EphemeralDevicePartitioner")

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        listing = self.parted.probe(device_path)
        existing = listing.partitions if listing is not None else []

        if self._match_partition_names(existing, partitions):
            self.log.info(f"{device_path} already partitioned as expected, skipping")
            return PartitionResult(PartitionStatus.CONVERGED, device_path, self.name)

        self.log.debug(f"Removing {len(existing)} old partitions from {device_path}")
        self.parted.remove_partitions(existing, device_path)
        self._ensure_gpt_label(device_path)

        return self.parted.partition(device_path, partitions)

    def get_device_size_in_bytes(self, device_path: str) -> int:
        return self.parted.get_device_size_in_bytes(device_path)

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        return self.parted.get_partitions(device_path)

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        self.parted.remove_partitions(partitions, device_path)

    def _match_partition_names(
        self,
        existing: Sequence[ExistingPartition],
        desired: Sequence[DesiredPartition],
    ) -> bool:
        if len(existing) < len(desired):
            return False

        return all(
            existing_partition.name.startswith(partition.name_prefix)
            for partition, existing_partition in zip(desired, existing)
        )

    def _ensure_gpt_label(self, device_path: str) -> None:
        try:
            result = self.runner.run_command(parted_print_command(device_path), check=False)
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Ensuring GPT table of `{device_path}'", device=device_path
            ) from error
        if "gpt" not in result.stdout:
            self.parted.make_gpt_label(device_path)

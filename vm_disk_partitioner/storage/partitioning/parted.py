"""GPT/MBR partitioning with parted.

Probing uses ``parted -m <device> unit B print`` (see parsers.py for the
format). Partitions are created in request order, each starting on the next
alignment boundary after the previous one; an end that would run past the
device is clamped to the last byte instead of failing.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.domain.models import (
    DesiredPartition,
    ExistingPartition,
    PartedListing,
    PartitionResult,
    PartitionStatus,
    PartitionType,
)
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import CommandRunner, rescan_device
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    PartitionOperationError,
)

from .base import (
    AGENT_PARTITION_NAME_PREFIX,
    align_up,
    partition_device_path,
    significantly_smaller_than,
    within_delta,
)
from .device_size import DeviceSizeProbe
from .parsers import parse_parted_listing


UNRECOGNISED_LABEL_MARKERS = ("unrecognised disk label", "unrecognized disk label")


def parted_print_command(device_path: str) -> list[str]:
    return ["parted", "-m", device_path, "unit", "B", "print"]


def skip_efi_partitions(partitions: Sequence[ExistingPartition]) -> list[ExistingPartition]:
    """Drop a leading EFI partition; it never takes part in layout comparisons."""
    if partitions and partitions[0].type is PartitionType.EFI:
        return list(partitions[1:])
    return list(partitions)


class PartedPartitioner:
    name = "parted"

    def __init__(
        self,
        runner: CommandRunner,
        config: Optional[PartitionerConfig] = None,
        size_probe: Optional[DeviceSizeProbe] = None,
    ):
        self.runner = runner
        self.config = config or PartitionerConfig()
        self.size_probe = size_probe or DeviceSizeProbe(runner)
        self.log = LoggerFactory.for_partitioner("PartedPartitioner")

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        listing = self.probe(device_path, create_label=True)
        existing = listing.partitions
        full_size = listing.device.full_size_in_bytes

        if self._partitions_match(existing, partitions, full_size):
            self.log.info(f"{device_path} already partitioned as expected, skipping")
            return PartitionResult(PartitionStatus.CONVERGED, device_path, self.name)

        if self._any_created_by_agent(existing):
            raise PartitionOperationError(
                f"'{device_path}' contains a partition created by the agent. "
                "No partitioning is allowed.",
                device=device_path,
            )

        self._create_each_partition(partitions, full_size, device_path, listing.table_type)
        rescan_device(self.runner, device_path)
        return PartitionResult(PartitionStatus.MUTATED, device_path, self.name)

    def get_device_size_in_bytes(self, device_path: str) -> int:
        return self.size_probe.get_block_device_size(device_path)

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        listing = self.get_listing(device_path)
        return listing.partitions, listing.device.full_size_in_bytes

    def get_listing(self, device_path: str) -> PartedListing:
        try:
            result = self.runner.run_command(parted_print_command(device_path))
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Running parted print on `{device_path}'", device=device_path
            ) from error
        return parse_parted_listing(result.stdout, device_path)

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        for partition in partitions:
            partition_path = partition_device_path(device_path, partition.index)
            try:
                self.runner.run_command(["wipefs", "-a", partition_path])
            except CommandExecutionError as error:
                raise PartitionOperationError(
                    f"Erasing partition `{partition_path}'", device=device_path
                ) from error

            try:
                self.runner.run_command(
                    ["parted", "-s", device_path, "rm", str(partition.index)]
                )
            except CommandExecutionError as error:
                raise PartitionOperationError(
                    f"Removing partition from `{device_path}'", device=device_path
                ) from error
            self.log.info(
                f"Successfully removed partition {partition.index} "
                f"({partition.name or 'unnamed'}) from {device_path}"
            )

    def make_gpt_label(self, device_path: str) -> None:
        self.log.debug(f"Creating gpt table on {device_path}")
        try:
            self.runner.run_command(["parted", "-s", device_path, "mklabel", "gpt"])
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Parted making label on `{device_path}'", device=device_path
            ) from error

    def single_partition_needs_resize(
        self, device_path: str, expected_type: PartitionType
    ) -> bool:
        existing, disk_size = self.get_partitions(device_path)
        if len(existing) > 1:
            raise PartitionOperationError(
                "Persistent disks with many partitions are not supported. "
                f"Expected 1, got {len(existing)}.",
                device=device_path,
            )
        if not existing:
            return False

        partition = existing[0]
        if partition.type is not expected_type:
            return False
        return significantly_smaller_than(
            partition.size_in_bytes, disk_size, self.config.parted_delta_bytes
        )

    def resize_single_partition(self, device_path: str) -> None:
        for program in ("growpart", "partx"):
            if not self.runner.command_exists(program):
                message = (
                    f"The program '{program}' is not installed, "
                    "Persistent Filesystem cannot be grown"
                )
                self.log.info(message)
                raise PartitionOperationError(message, device=device_path)

        try:
            self.runner.run_command(["growpart", device_path, "1", "--update", "auto"])
        except CommandExecutionError as error:
            self.log.error(f"Failed with an error: {error}")
            raise PartitionOperationError(
                f"Repartitioning disk `{device_path}'", device=device_path
            ) from error
        self.log.info(f"Successfully resized single partition in {device_path}")

    def probe(self, device_path: str, *, create_label: bool = False) -> Optional[PartedListing]:
        """List the table, tolerating a disk that has none.

        Without ``create_label`` an unlabeled disk yields None; with it a GPT
        label is written and the fresh (empty) table is returned.
        """
        try:
            result = self.runner.run_command(parted_print_command(device_path), check=False)
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Getting existing partitions of `{device_path}'", device=device_path
            ) from error
        output = f"{result.stdout}\n{result.stderr}"

        if any(marker in output for marker in UNRECOGNISED_LABEL_MARKERS):
            if not create_label:
                return None
            self.make_gpt_label(device_path)
            return self.get_listing(device_path)

        if result.returncode != 0:
            raise PartitionOperationError(
                f"Getting existing partitions of `{device_path}'", device=device_path
            ) from CommandExecutionError(
                result.args, result.returncode, result.stdout, result.stderr
            )

        listing = parse_parted_listing(result.stdout, device_path)
        # parted shows a "loop" table when it found no real one
        if listing.table_type == "loop":
            if not create_label:
                return None
            self.make_gpt_label(device_path)
            return self.get_listing(device_path)
        return listing

    def _partitions_match(
        self,
        existing: Sequence[ExistingPartition],
        desired: Sequence[DesiredPartition],
        device_size_in_bytes: int,
    ) -> bool:
        existing = skip_efi_partitions(existing)
        if len(existing) < len(desired):
            return False

        remaining_disk_space = device_size_in_bytes
        for index, partition in enumerate(desired):
            size = partition.size_in_bytes
            if index == len(desired) - 1 and size == 0:
                size = remaining_disk_space

            existing_partition = existing[index]
            if existing_partition.type is not partition.type:
                return False
            if not within_delta(
                size, existing_partition.size_in_bytes, self.config.parted_delta_bytes
            ):
                return False

            remaining_disk_space -= size

        return True

    def _any_created_by_agent(self, existing: Sequence[ExistingPartition]) -> bool:
        return any(
            partition.name.startswith(AGENT_PARTITION_NAME_PREFIX) for partition in existing
        )

    def _create_each_partition(
        self,
        partitions: Sequence[DesiredPartition],
        device_full_size_in_bytes: int,
        device_path: str,
        table_type: str,
    ) -> None:
        alignment = self.config.alignment_bytes
        last_byte = device_full_size_in_bytes - 1
        # first usable aligned offset; the table lives in front of it
        partition_start = alignment

        for index, partition in enumerate(partitions):
            if partition_start > last_byte:
                raise PartitionOperationError(
                    f"Partitioning disk `{device_path}': no space left for partition {index}",
                    device=device_path,
                )

            if partition.size_in_bytes == 0:
                partition_end = last_byte
            else:
                partition_end = partition_start + partition.size_in_bytes - 1
                if partition_end > last_byte:
                    partition_end = last_byte
                    self.log.info(
                        f"Partition {index} would be larger than remaining space. "
                        f"Reducing size to {partition_end - partition_start + 1}B"
                    )

            if table_type == "msdos":
                label = "primary"
            else:
                label = f"{partition.name_prefix or AGENT_PARTITION_NAME_PREFIX}-{index}"

            self.log.info(
                f"Creating partition {index} with start {partition_start}B "
                f"and end {partition_end}B on {device_path}"
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
                        label,
                        str(partition_start),
                        str(partition_end),
                    ]
                )
            except CommandExecutionError as error:
                self.log.error(f"Failed with an error: {error}")
                raise PartitionOperationError(
                    f"Partitioning disk `{device_path}'", device=device_path
                ) from error

            partition_start = align_up(partition_end + 1, alignment)

"""Legacy MBR partitioning with sfdisk.

Layouts are written as an sfdisk input script on standard input, one
``,<size>,<type>`` line per partition; the last line leaves the size blank
so it takes the rest of the disk. The write is retried because the device
can report busy right after a previous destructive operation.

sfdisk is not used on GPT disks: a dump that carries a GPT label or a
protective MBR entry yields a GPT_CONFLICT result and nothing is written.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Sequence

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.domain.models import (
    DesiredPartition,
    ExistingPartition,
    PartitionResult,
    PartitionStatus,
    PartitionType,
    SfdiskEntry,
)
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import (
    CommandRunner,
    RetryPolicy,
    rescan_device,
    run_with_retry,
)
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    PartitionOperationError,
    StorageError,
)

from .base import bytes_to_mib, kib_to_bytes, partition_device_path, within_delta
from .parsers import parse_sfdisk_dump, parse_size_output, sfdisk_dump_is_gpt


SFDISK_SECTOR_SIZE = 512

SFDISK_PARTITION_TYPES = {
    PartitionType.SWAP: "S",
    PartitionType.LINUX: "L",
}


def build_sfdisk_script(partitions: Sequence[DesiredPartition]) -> str:
    lines = []
    for index, partition in enumerate(partitions):
        size = f"{bytes_to_mib(partition.size_in_bytes)}MiB"
        if index == len(partitions) - 1:
            size = ""
        lines.append(f",{size},{SFDISK_PARTITION_TYPES.get(partition.type, '')}\n")
    return "".join(lines)


class SfdiskPartitioner:
    name = "sfdisk"

    def __init__(
        self,
        runner: CommandRunner,
        config: Optional[PartitionerConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.config = config or PartitionerConfig()
        self.sleep = sleep
        self.log = LoggerFactory.for_partitioner("SfdiskPartitioner")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.config.sfdisk_retry_attempts,
            delay_seconds=self.config.sfdisk_retry_delay_seconds,
        )

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        entries, is_gpt = self._read_dump(device_path)
        if is_gpt:
            self.log.info(f"{device_path} carries a GPT partition table, not using sfdisk")
            return PartitionResult(PartitionStatus.GPT_CONFLICT, device_path, self.name)

        if self._disk_matches_partitions(device_path, entries, partitions):
            self.log.info(f"{device_path} already partitioned as expected, skipping")
            return PartitionResult(PartitionStatus.CONVERGED, device_path, self.name)

        sfdisk_input = build_sfdisk_script(partitions)

        def write_table(attempt: int) -> None:
            self.log.info(f"{attempt}: Partitioning {device_path} with {sfdisk_input!r}")
            self.runner.run_command(["sfdisk", device_path], input_text=sfdisk_input)
            self.log.info(
                f"{attempt}: Succeeded in partitioning {device_path} with {sfdisk_input!r}"
            )

        try:
            run_with_retry(
                write_table,
                self.retry_policy,
                sleep=self.sleep,
                description=f"sfdisk on {device_path}",
            )
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Partitioning disk `{device_path}' with sfdisk", device=device_path
            ) from error

        rescan_device(self.runner, device_path)
        return PartitionResult(PartitionStatus.MUTATED, device_path, self.name)

    def get_device_size_in_bytes(self, device_path: str) -> int:
        try:
            result = self.runner.run_command(["sfdisk", "-s", device_path])
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Shelling out to sfdisk for the size of `{device_path}'", device=device_path
            ) from error
        return kib_to_bytes(parse_size_output(result.stdout, device_path))

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        try:
            result = self.runner.run_command(["sfdisk", "-d", device_path])
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Getting existing partitions of `{device_path}'", device=device_path
            ) from error
        existing = self._existing_from_entries(parse_sfdisk_dump(result.stdout))
        return existing, self.get_device_size_in_bytes(device_path)

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        for partition in partitions:
            partition_path = partition_device_path(device_path, partition.index)
            try:
                self.runner.run_command(["wipefs", "-a", partition_path])
                self.runner.run_command(
                    ["sfdisk", "--delete", device_path, str(partition.index)]
                )
            except CommandExecutionError as error:
                raise PartitionOperationError(
                    f"Removing partition from `{device_path}'", device=device_path
                ) from error
            self.log.info(f"Successfully removed partition {partition.index} from {device_path}")

    def _read_dump(self, device_path: str) -> tuple[list[ExistingPartition], bool]:
        try:
            result = self.runner.run_command(["sfdisk", "-d", device_path], check=False)
        except CommandExecutionError as error:
            raise PartitionOperationError(
                f"Getting existing partitions of `{device_path}'", device=device_path
            ) from error
        if result.returncode != 0:
            # a blank disk has no table to dump
            self.log.debug(f"No partition table dump for {device_path}: {result.stderr.strip()}")
            return [], False
        entries = parse_sfdisk_dump(result.stdout)
        if sfdisk_dump_is_gpt(result.stdout, entries):
            return [], True
        return self._existing_from_entries(entries), False

    def _existing_from_entries(self, entries: Sequence[SfdiskEntry]) -> list[ExistingPartition]:
        existing: list[ExistingPartition] = []
        for entry in entries:
            size = (entry.size_sectors or 0) * SFDISK_SECTOR_SIZE
            if entry.type is not PartitionType.EMPTY:
                try:
                    size = self.get_device_size_in_bytes(entry.partition_path)
                except StorageError as error:
                    self.log.debug(
                        f"Could not size {entry.partition_path}, using dump size {size}: {error}"
                    )
            start = (entry.start_sector or 0) * SFDISK_SECTOR_SIZE
            existing.append(
                ExistingPartition(
                    index=entry.index,
                    start_in_bytes=start,
                    end_in_bytes=start + size - 1,
                    size_in_bytes=size,
                    type=entry.type,
                )
            )
        return existing

    def _disk_matches_partitions(
        self,
        device_path: str,
        existing: Sequence[ExistingPartition],
        partitions_to_match: Sequence[DesiredPartition],
    ) -> bool:
        if len(existing) < len(partitions_to_match):
            return False

        try:
            remaining_disk_space = self.get_device_size_in_bytes(device_path)
        except StorageError as error:
            self.log.debug(f"Getting device size for {device_path}: {error}")
            return False

        for index, partition_to_match in enumerate(partitions_to_match):
            size = partition_to_match.size_in_bytes
            if index == len(partitions_to_match) - 1:
                size = remaining_disk_space

            existing_partition = existing[index]
            if existing_partition.type is not partition_to_match.type:
                return False
            if not within_delta(
                existing_partition.size_in_bytes, size, self.config.sfdisk_delta_bytes
            ):
                return False

            remaining_disk_space -= size

        return True

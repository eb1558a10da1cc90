"""Raw block device size, independent of any partition table."""

from __future__ import annotations

from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import CommandRunner
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    PartitionOperationError,
)

from .parsers import parse_size_output


class DeviceSizeProbe:
    """Reads a device's byte size with ``lsblk``."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner
        self.log = LoggerFactory.for_partitioner("DeviceSizeProbe")

    def get_block_device_size(self, device_path: str) -> int:
        try:
            result = self.runner.run_command(
                ["lsblk", "--nodeps", "-nb", "-o", "SIZE", device_path]
            )
        except CommandExecutionError as error:
            self.log.error(f"Getting the block device size of '{device_path}': {error}")
            raise PartitionOperationError(
                f"Getting block device size of '{device_path}'", device=device_path
            ) from error

        size = parse_size_output(result.stdout, device_path)
        self.log.debug(f"Block device {device_path} is {size} bytes")
        return size

"""Backend selection for persistent disks.

sfdisk only reliably manages MBR tables below 2 TiB and refuses disks that
already carry a GPT. Disks above the threshold go straight to parted, and an
sfdisk GPT_CONFLICT outcome is retried through parted. The caller never
sees which backend ran, only the resulting status.
"""

from __future__ import annotations

from typing import Optional, Sequence

from vm_disk_partitioner.config.settings import (
    DEFAULT_SFDISK_MAX_SIZE_BYTES,
    PartitionerConfig,
)
from vm_disk_partitioner.domain.models import (
    BackendKind,
    DesiredPartition,
    ExistingPartition,
    PartitionResult,
)
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.exceptions import StorageError

from .device_size import DeviceSizeProbe
from .parted import PartedPartitioner
from .sfdisk import SfdiskPartitioner


def choose_backend(
    probed_size: Optional[int], threshold: int = DEFAULT_SFDISK_MAX_SIZE_BYTES
) -> BackendKind:
    """Pick the backend for a disk of ``probed_size`` bytes.

    An unknown size is treated as a small legacy disk.
    """
    if probed_size is not None and probed_size > threshold:
        return BackendKind.PARTED
    return BackendKind.SFDISK


class PersistentDevicePartitioner:
    name = "persistent"

    def __init__(
        self,
        sfdisk: SfdiskPartitioner,
        parted: PartedPartitioner,
        size_probe: DeviceSizeProbe,
        config: Optional[PartitionerConfig] = None,
    ):
        self.sfdisk = sfdisk
        self.parted = parted
        self.size_probe = size_probe
        self.config = config or PartitionerConfig()
        self.log = LoggerFactory.for_partitioner("PersistentDevicePartitioner")

    def partition(
        self, device_path: str, partitions: Sequence[DesiredPartition]
    ) -> PartitionResult:
        try:
            size: Optional[int] = self.size_probe.get_block_device_size(device_path)
        except StorageError as error:
            self.log.debug(
                f"Could not get block device size of {device_path}, using sfdisk: {error}"
            )
            size = None

        if choose_backend(size, self.config.sfdisk_max_size_bytes) is BackendKind.PARTED:
            self.log.debug(
                f"Using parted partitioner because disk size is too large: {size}"
            )
            return self.parted.partition(device_path, partitions)

        self.log.debug("Attempting to partition with sfdisk partitioner")
        result = self.sfdisk.partition(device_path, partitions)
        if result.gpt_conflict:
            self.log.debug("GPT partition detected, falling back to parted")
            return self.parted.partition(device_path, partitions)

        return result

    def get_device_size_in_bytes(self, device_path: str) -> int:
        return self.sfdisk.get_device_size_in_bytes(device_path)

    def get_partitions(self, device_path: str) -> tuple[list[ExistingPartition], int]:
        return self.parted.get_partitions(device_path)

    def remove_partitions(
        self, partitions: Sequence[ExistingPartition], device_path: str
    ) -> None:
        self.parted.remove_partitions(partitions, device_path)

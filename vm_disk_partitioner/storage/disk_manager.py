"""Composition of the partitioners used by the disk orchestrator.

Example:
    >>> from vm_disk_partitioner.domain import DesiredPartition, PartitionType
    >>> from vm_disk_partitioner.storage.disk_manager import DiskManager
    >>> manager = DiskManager()
    >>> partitioner = manager.get_persistent_device_partitioner("")
    >>> partitioner.partition("/dev/sdc", [DesiredPartition(PartitionType.LINUX)])
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.commands import CommandRunner
from vm_disk_partitioner.storage.exceptions import UnknownPartitionerTypeError
from vm_disk_partitioner.storage.partitioning import (
    DeviceSizeProbe,
    EphemeralDevicePartitioner,
    PartedPartitioner,
    Partitioner,
    PersistentDevicePartitioner,
    RootDevicePartitioner,
    SfdiskPartitioner,
)


log = LoggerFactory.for_system()

PARTED_PARTITIONER_TYPE = "parted"
DEFAULT_PARTITIONER_TYPE = ""


class DiskManager:
    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        config: Optional[PartitionerConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner or CommandRunner()
        self.config = config or PartitionerConfig.from_settings()

        if self.config.partitioner_type not in (
            DEFAULT_PARTITIONER_TYPE,
            PARTED_PARTITIONER_TYPE,
        ):
            raise UnknownPartitionerTypeError(self.config.partitioner_type)

        self.size_probe = DeviceSizeProbe(self.runner)
        self.parted = PartedPartitioner(self.runner, self.config, self.size_probe)
        self.sfdisk = SfdiskPartitioner(self.runner, self.config, sleep=sleep)
        self.persistent = PersistentDevicePartitioner(
            self.sfdisk, self.parted, self.size_probe, self.config
        )
        self.root = RootDevicePartitioner(
            self.runner, config=self.config, parted=self.parted
        )
        self.ephemeral = EphemeralDevicePartitioner(self.parted, self.runner)
        log.debug(
            f"Disk manager ready (partitioner type '{self.config.partitioner_type}')"
        )

    def get_root_device_partitioner(self) -> RootDevicePartitioner:
        return self.root

    def get_ephemeral_device_partitioner(self) -> EphemeralDevicePartitioner:
        return self.ephemeral

    def get_persistent_device_partitioner(
        self, partitioner_type: Optional[str] = None
    ) -> Partitioner:
        if partitioner_type is None:
            partitioner_type = self.config.partitioner_type
        if partitioner_type == PARTED_PARTITIONER_TYPE:
            return self.parted
        if partitioner_type == DEFAULT_PARTITIONER_TYPE:
            return self.persistent
        raise UnknownPartitionerTypeError(partitioner_type)

    def get_device_size_probe(self) -> DeviceSizeProbe:
        return self.size_probe

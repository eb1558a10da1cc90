"""Partitioning backends and composite partitioners."""

from __future__ import annotations

from .base import Partitioner, align_up
from .device_size import DeviceSizeProbe
from .ephemeral import EphemeralDevicePartitioner
from .parted import PartedPartitioner
from .persistent import PersistentDevicePartitioner, choose_backend
from .root_device import RootDevicePartitioner
from .sfdisk import SfdiskPartitioner, build_sfdisk_script


__all__ = [
    "DeviceSizeProbe",
    "EphemeralDevicePartitioner",
    "PartedPartitioner",
    "Partitioner",
    "PersistentDevicePartitioner",
    "RootDevicePartitioner",
    "SfdiskPartitioner",
    "align_up",
    "build_sfdisk_script",
    "choose_backend",
]

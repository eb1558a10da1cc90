"""Domain models for partition reconciliation."""

from __future__ import annotations

from .models import (
    BackendKind,
    DesiredPartition,
    Device,
    ExistingPartition,
    PartedListing,
    PartitionResult,
    PartitionStatus,
    PartitionType,
    SfdiskEntry,
)


__all__ = [
    "BackendKind",
    "DesiredPartition",
    "Device",
    "ExistingPartition",
    "PartedListing",
    "PartitionResult",
    "PartitionStatus",
    "PartitionType",
    "SfdiskEntry",
]

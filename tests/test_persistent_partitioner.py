"""Tests for storage/partitioning/persistent.py - persistent disk backend selection.

This test suite covers:
- Size threshold between sfdisk and parted
- Fallback to sfdisk when the size cannot be probed
- Fallback to parted on GPT disks
- Error propagation from the selected backend
"""

from unittest.mock import Mock

import pytest

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.domain.models import (
    BackendKind,
    DesiredPartition,
    PartitionResult,
    PartitionStatus,
    PartitionType,
)
from vm_disk_partitioner.storage.exceptions import PartitionOperationError
from vm_disk_partitioner.storage.partitioning.device_size import DeviceSizeProbe
from vm_disk_partitioner.storage.partitioning.parted import PartedPartitioner
from vm_disk_partitioner.storage.partitioning.persistent import (
    PersistentDevicePartitioner,
    choose_backend,
)
from vm_disk_partitioner.storage.partitioning.sfdisk import SfdiskPartitioner

GIB = 1024 * 1024 * 1024
TIB = 1024 * GIB
LSBLK_SDC = ["lsblk", "--nodeps", "-nb", "-o", "SIZE", "/dev/sdc"]
PRINT_SDC = ["parted", "-m", "/dev/sdc", "unit", "B", "print"]
DESIRED = [DesiredPartition(PartitionType.LINUX, 0)]


class TestChooseBackend:
    """Tests for choose_backend() function."""

    def test_small_disk_uses_sfdisk(self):
        """Test disks up to the threshold use sfdisk."""
        assert choose_backend(10 * GIB) is BackendKind.SFDISK
        assert choose_backend(2 * TIB) is BackendKind.SFDISK

    def test_large_disk_uses_parted(self):
        """Test disks above the threshold use parted."""
        assert choose_backend(2 * TIB + 1) is BackendKind.PARTED

    def test_unknown_size_uses_sfdisk(self):
        """Test an unknown size is treated as a small disk."""
        assert choose_backend(None) is BackendKind.SFDISK

    def test_custom_threshold(self):
        """Test the threshold can be overridden."""
        assert choose_backend(11 * GIB, threshold=10 * GIB) is BackendKind.PARTED


@pytest.fixture
def backends():
    sfdisk = Mock(spec=SfdiskPartitioner)
    parted = Mock(spec=PartedPartitioner)
    size_probe = Mock(spec=DeviceSizeProbe)
    sfdisk.partition.return_value = PartitionResult(
        PartitionStatus.MUTATED, "/dev/sdc", "sfdisk"
    )
    parted.partition.return_value = PartitionResult(
        PartitionStatus.MUTATED, "/dev/sdc", "parted"
    )
    return sfdisk, parted, size_probe


class TestPersistentDispatch:
    """Tests for PersistentDevicePartitioner.partition() dispatch."""

    def test_small_disk_dispatches_to_sfdisk(self, backends):
        """Test a 10 GiB disk is partitioned by sfdisk only."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 10 * GIB

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
            "/dev/sdc", DESIRED
        )

        assert result.backend == "sfdisk"
        sfdisk.partition.assert_called_once_with("/dev/sdc", DESIRED)
        parted.partition.assert_not_called()

    def test_large_disk_dispatches_to_parted(self, backends):
        """Test a 3 TiB disk is partitioned by parted without trying sfdisk."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 3 * TIB

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
            "/dev/sdc", DESIRED
        )

        assert result.backend == "parted"
        sfdisk.partition.assert_not_called()

    def test_probe_failure_uses_sfdisk(self, backends):
        """Test an unknown size falls back to sfdisk."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.side_effect = PartitionOperationError(
            "Getting block device size of '/dev/sdc'"
        )

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
            "/dev/sdc", DESIRED
        )

        assert result.backend == "sfdisk"

    def test_gpt_conflict_falls_back_to_parted(self, backends):
        """Test a GPT disk refused by sfdisk is partitioned by parted."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 10 * GIB
        sfdisk.partition.return_value = PartitionResult(
            PartitionStatus.GPT_CONFLICT, "/dev/sdc", "sfdisk"
        )

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
            "/dev/sdc", DESIRED
        )

        assert result.mutated
        assert result.backend == "parted"
        parted.partition.assert_called_once_with("/dev/sdc", DESIRED)

    def test_converged_sfdisk_result_returned(self, backends):
        """Test a matching sfdisk disk is reported as converged."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 10 * GIB
        sfdisk.partition.return_value = PartitionResult(
            PartitionStatus.CONVERGED, "/dev/sdc", "sfdisk"
        )

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
            "/dev/sdc", DESIRED
        )

        assert result.converged
        parted.partition.assert_not_called()

    def test_sfdisk_errors_do_not_fall_back(self, backends):
        """Test sfdisk failures other than GPT propagate."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 10 * GIB
        sfdisk.partition.side_effect = PartitionOperationError(
            "Partitioning disk `/dev/sdc' with sfdisk"
        )

        with pytest.raises(PartitionOperationError):
            PersistentDevicePartitioner(sfdisk, parted, size_probe).partition(
                "/dev/sdc", DESIRED
            )
        parted.partition.assert_not_called()

    def test_threshold_from_config(self, backends):
        """Test the sfdisk size limit comes from the configuration."""
        sfdisk, parted, size_probe = backends
        size_probe.get_block_device_size.return_value = 20 * GIB
        config = PartitionerConfig(sfdisk_max_size_bytes=10 * GIB)

        result = PersistentDevicePartitioner(sfdisk, parted, size_probe, config).partition(
            "/dev/sdc", DESIRED
        )

        assert result.backend == "parted"


class TestPersistentWithRunner:
    """Tests running the real backends against scripted tool output."""

    def test_gpt_disk_end_to_end(self, runner, sfdisk_dump_gpt):
        """Test a small GPT disk ends up partitioned by parted."""
        runner.add_result(LSBLK_SDC, stdout=f"{10 * GIB}\n")
        runner.add_result(["sfdisk", "-d", "/dev/sdc"], stdout=sfdisk_dump_gpt)
        runner.add_result(
            PRINT_SDC,
            stdout=f"BYT;\n/dev/sdc:{10 * GIB}B:scsi:512:512:gpt:VMware Virtual disk:;\n",
        )
        size_probe = DeviceSizeProbe(runner)
        partitioner = PersistentDevicePartitioner(
            SfdiskPartitioner(runner),
            PartedPartitioner(runner, size_probe=size_probe),
            size_probe,
        )

        result = partitioner.partition("/dev/sdc", DESIRED)

        assert result.mutated
        assert result.backend == "parted"
        assert ["sfdisk", "/dev/sdc"] not in runner.calls
        assert runner.commands_starting_with("parted", "-s", "/dev/sdc", "unit", "B", "mkpart")

    def test_queries_use_backends(self, runner):
        """Test the size comes from sfdisk and the listing from parted."""
        runner.add_result(["sfdisk", "-s", "/dev/sdc"], stdout="10485760\n")
        runner.add_result(
            PRINT_SDC,
            stdout=f"BYT;\n/dev/sdc:{10 * GIB}B:scsi:512:512:gpt:VMware Virtual disk:;\n",
        )
        size_probe = DeviceSizeProbe(runner)
        partitioner = PersistentDevicePartitioner(
            SfdiskPartitioner(runner), PartedPartitioner(runner), size_probe
        )

        assert partitioner.get_device_size_in_bytes("/dev/sdc") == 10 * GIB
        assert partitioner.get_partitions("/dev/sdc") == ([], 10 * GIB)
        partitioner.remove_partitions([], "/dev/sdc")
        assert runner.calls == [["sfdisk", "-s", "/dev/sdc"], PRINT_SDC]

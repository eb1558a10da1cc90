"""
Pytest configuration and shared fixtures for vm-disk-partitioner tests.

This module provides a scripted command runner and recorded tool output used
across all test modules.
"""

import subprocess
from collections import defaultdict, deque
from typing import Dict, List, Optional, Sequence

import pytest
from loguru import logger

from vm_disk_partitioner.config.settings import PartitionerConfig
from vm_disk_partitioner.storage.exceptions import CommandExecutionError


# ==============================================================================
# Command Runner Fixtures
# ==============================================================================


NOT_STARTED = object()


class FakeCommandRunner:
    """Stands in for CommandRunner, replaying scripted results.

    Results are queued per command line (``" ".join(command)``). A queued
    result is consumed once; the last one queued for a command keeps being
    returned. Unscripted commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.results: Dict[str, deque] = defaultdict(deque)
        self.missing_programs: set = set()

    def add_result(
        self, command: Sequence[str], stdout: str = "", stderr: str = "", returncode: int = 0
    ) -> None:
        self.results[" ".join(command)].append((stdout, stderr, returncode))

    def fail(self, command: Sequence[str], stderr: str = "error", returncode: int = 1) -> None:
        self.add_result(command, stderr=stderr, returncode=returncode)

    def fail_to_start(self, command: Sequence[str]) -> None:
        """Make a command raise as if its program could not be executed."""
        self.results[" ".join(command)].append(NOT_STARTED)

    def run_command(
        self,
        command: Sequence[str],
        *,
        input_text: Optional[str] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        command = list(command)
        self.calls.append(command)
        self.inputs.append(input_text)

        queued = self.results.get(" ".join(command))
        if queued:
            outcome = queued.popleft() if len(queued) > 1 else queued[0]
        else:
            outcome = ("", "", 0)

        if outcome is NOT_STARTED:
            raise CommandExecutionError(
                command, -1, stderr=f"No such file or directory: '{command[0]}'"
            )
        stdout, stderr, returncode = outcome

        if check and returncode != 0:
            raise CommandExecutionError(command, returncode, stdout, stderr)
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)

    def command_exists(self, name: str) -> bool:
        return name not in self.missing_programs

    def commands_starting_with(self, *prefix: str) -> List[List[str]]:
        return [call for call in self.calls if call[: len(prefix)] == list(prefix)]


@pytest.fixture
def runner() -> FakeCommandRunner:
    """Fixture providing a scripted command runner."""
    return FakeCommandRunner()


@pytest.fixture
def config() -> PartitionerConfig:
    """Fixture providing default partitioner tunables."""
    return PartitionerConfig()


@pytest.fixture
def no_sleep() -> List[float]:
    """Fixture recording requested sleeps instead of waiting."""
    return []


# ==============================================================================
# Recorded Tool Output Fixtures
# ==============================================================================


@pytest.fixture
def parted_root_msdos() -> str:
    """parted listing of a 20 GiB root disk with a single ext4 partition."""
    return (
        "BYT;\n"
        "/dev/vda:21474836480B:virtblk:512:512:msdos:Virtio Block Device;\n"
        "1:32256B:3071000063B:3070967808B:ext4::;\n"
    )


@pytest.fixture
def parted_root_efi() -> str:
    """parted listing of a 20 GiB GPT root disk with EFI and root partitions."""
    return (
        "BYT;\n"
        "/dev/vda:21474836480B:virtblk:512:512:gpt:Virtio Block Device:;\n"
        "1:1048576B:135266303B:134217728B:fat16:EFI System Partition:boot, esp;\n"
        "2:135266304B:5368709119B:5233442816B:ext4::;\n"
    )


@pytest.fixture
def parted_empty_gpt() -> str:
    """parted listing of a blank 10 GiB disk carrying an empty GPT."""
    return (
        "BYT;\n"
        "/dev/sdb:10737418240B:scsi:512:512:gpt:VMware Virtual disk:;\n"
    )


@pytest.fixture
def sfdisk_dump_mbr() -> str:
    """sfdisk -d dump of a disk with swap and linux partitions."""
    return (
        "# partition table of /dev/sdc\n"
        "unit: sectors\n"
        "\n"
        "/dev/sdc1 : start=     2048, size=  2097152, Id=82\n"
        "/dev/sdc2 : start=  2099200, size= 18872320, Id=83\n"
        "/dev/sdc3 : start=        0, size=        0, Id= 0\n"
        "/dev/sdc4 : start=        0, size=        0, Id= 0\n"
    )


@pytest.fixture
def sfdisk_dump_gpt() -> str:
    """sfdisk -d dump of a disk carrying a protective MBR."""
    return (
        "# partition table of /dev/sdc\n"
        "unit: sectors\n"
        "\n"
        "/dev/sdc1 : start=        1, size= 41943039, Id=ee\n"
        "/dev/sdc2 : start=        0, size=        0, Id= 0\n"
    )


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_records():
    """Fixture capturing loguru records emitted during a test."""
    records: list = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)

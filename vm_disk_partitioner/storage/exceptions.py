"""Custom exceptions for partitioning operations.

Exception Hierarchy:
    StorageError (base)
        ├── CommandExecutionError
        └── PartitionError
            ├── PartitionTableParseError
            ├── MissingFirstPartitionError
            ├── PartitionOperationError
            ├── UnsupportedOperationError
            └── UnknownPartitionerTypeError

Usage:
    from vm_disk_partitioner.storage.exceptions import PartitionOperationError

    try:
        runner.run_command(["parted", "-s", device_path, "mklabel", "gpt"])
    except CommandExecutionError as error:
        raise PartitionOperationError(
            f"Partitioning disk `{device_path}'", device=device_path
        ) from error
"""

from __future__ import annotations

from typing import Optional, Sequence


class StorageError(Exception):
    """Base exception for all storage operations."""


class CommandExecutionError(StorageError):
    """An external tool exited non-zero or could not be started."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        message = self.stderr.strip() or self.stdout.strip() or "Command failed"
        super().__init__(
            f"Command failed ({' '.join(self.command)}) "
            f"with exit status {returncode}: {message}"
        )


class PartitionError(StorageError):
    """Base exception for partition table errors."""


class PartitionTableParseError(PartitionError):
    """Tool output did not have the expected shape."""

    def __init__(self, message: str, device: Optional[str] = None, output: str = ""):
        self.device = device
        self.output = output
        super().__init__(message)


class MissingFirstPartitionError(PartitionError):
    """The root device has no boot partition to append after."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Missing first partition on `{device}'")


class PartitionOperationError(PartitionError):
    """A partitioning step failed; the message names the attempted operation."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        cause = self.__cause__
        if cause is not None:
            return f"{message}: {cause}"
        return message


class UnsupportedOperationError(PartitionError):
    """Operation is not supported by this partitioner."""

    def __init__(self, operation: str, partitioner: str):
        self.operation = operation
        self.partitioner = partitioner
        super().__init__(f"{operation} is not supported by {partitioner}")


class UnknownPartitionerTypeError(PartitionError):
    """Configured partitioner type is not recognised."""

    def __init__(self, partitioner_type: str):
        self.partitioner_type = partitioner_type
        super().__init__(f"Unknown partitioner type '{partitioner_type}'")

"""External command execution for partitioning tools.

Every probe and mutation goes through ``CommandRunner.run_command`` so that
partitioners can be exercised against a fake runner in tests.
"""

from __future__ import annotations

import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TypeVar

from vm_disk_partitioner.logging import LoggerFactory
from vm_disk_partitioner.storage.exceptions import (
    CommandExecutionError,
    PartitionOperationError,
)


log = LoggerFactory.for_command()

T = TypeVar("T")


class CommandRunner:
    """Runs external commands and captures their output."""

    def run_command(
        self,
        command: Sequence[str],
        *,
        input_text: Optional[str] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        command = list(command)
        log.debug(f"Running command: {' '.join(command)}")
        try:
            result = subprocess.run(
                command,
                input=input_text,
                text=True,
                capture_output=True,
            )
        except OSError as error:
            log.debug(f"Command could not be started: {' '.join(command)}: {error}")
            raise CommandExecutionError(command, -1, stderr=str(error)) from error

        if result.stdout:
            log.debug(f"stdout: {result.stdout.strip()}")
        if result.stderr:
            log.debug(f"stderr: {result.stderr.strip()}")
        log.debug(f"Command completed with return code {result.returncode}")

        if check and result.returncode != 0:
            raise CommandExecutionError(
                command, result.returncode, result.stdout, result.stderr
            )
        return result

    def command_exists(self, name: str) -> bool:
        return shutil.which(name) is not None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_seconds: float


def run_with_retry(
    action: Callable[[int], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "command",
) -> T:
    """Call ``action(attempt)`` until it stops raising CommandExecutionError.

    The last error is re-raised once ``policy.max_attempts`` is exhausted.
    ``sleep`` is injectable so tests do not wait in real time.
    """
    attempt = 1
    while True:
        try:
            return action(attempt)
        except CommandExecutionError as error:
            if attempt >= policy.max_attempts:
                log.error(
                    f"All {policy.max_attempts} attempts failed for {description}"
                )
                raise
            log.error(
                f"{attempt}: {description} failed (attempt {attempt}/{policy.max_attempts}): {error}"
            )
            log.debug(f"Retrying in {policy.delay_seconds} seconds...")
            sleep(policy.delay_seconds)
            attempt += 1


def rescan_device(runner: CommandRunner, device_path: str) -> None:
    """Make the kernel and udev pick up a rewritten partition table."""
    try:
        runner.run_command(["partprobe", device_path])
    except CommandExecutionError as error:
        raise PartitionOperationError(
            f"Re-reading partition table for `{device_path}'", device=device_path
        ) from error

    try:
        runner.run_command(["udevadm", "settle"])
    except CommandExecutionError as error:
        log.warning(f"Failed to run udevadm settle for {device_path}: {error}")

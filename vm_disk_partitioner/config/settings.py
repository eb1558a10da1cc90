"""Settings storage for partitioner tunables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "VM_DISK_PARTITIONER_SETTINGS_PATH",
        Path.home() / ".config" / "vm-disk-partitioner" / "settings.json",
    )
)

MIB = 1024 * 1024

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_ALIGNMENT_BYTES = MIB
DEFAULT_ROOT_DELTA_BYTES = 20 * MIB
DEFAULT_PARTED_DELTA_BYTES = 100 * MIB
DEFAULT_SFDISK_DELTA_BYTES = 20 * MIB
DEFAULT_SFDISK_MAX_SIZE_BYTES = 2 * 1024 * 1024 * MIB
DEFAULT_SFDISK_RETRY_ATTEMPTS = 20
DEFAULT_SFDISK_RETRY_DELAY_SECONDS = 3.0

DEFAULT_SETTINGS: dict[str, Any] = {
    "partitioner_type": "",
    "alignment_bytes": DEFAULT_ALIGNMENT_BYTES,
    "root_delta_bytes": DEFAULT_ROOT_DELTA_BYTES,
    "parted_delta_bytes": DEFAULT_PARTED_DELTA_BYTES,
    "sfdisk_delta_bytes": DEFAULT_SFDISK_DELTA_BYTES,
    "sfdisk_max_size_bytes": DEFAULT_SFDISK_MAX_SIZE_BYTES,
    "sfdisk_retry_attempts": DEFAULT_SFDISK_RETRY_ATTEMPTS,
    "sfdisk_retry_delay_seconds": DEFAULT_SFDISK_RETRY_DELAY_SECONDS,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_int(key: str, default: int = 0) -> int:
    return int(get_setting(key, default))


def get_float(key: str, default: float = 0.0) -> float:
    return float(get_setting(key, default))


@dataclass(frozen=True)
class PartitionerConfig:
    """Tunables injected into every partitioner.

    Byte deltas absorb the rounding partitioning tools apply to requested
    sizes when deciding whether an existing table already matches.
    """

    alignment_bytes: int = DEFAULT_ALIGNMENT_BYTES
    root_delta_bytes: int = DEFAULT_ROOT_DELTA_BYTES
    parted_delta_bytes: int = DEFAULT_PARTED_DELTA_BYTES
    sfdisk_delta_bytes: int = DEFAULT_SFDISK_DELTA_BYTES
    sfdisk_max_size_bytes: int = DEFAULT_SFDISK_MAX_SIZE_BYTES
    sfdisk_retry_attempts: int = DEFAULT_SFDISK_RETRY_ATTEMPTS
    sfdisk_retry_delay_seconds: float = DEFAULT_SFDISK_RETRY_DELAY_SECONDS
    partitioner_type: str = ""

    @classmethod
    def from_settings(cls) -> PartitionerConfig:
        return cls(
            alignment_bytes=get_int("alignment_bytes", DEFAULT_ALIGNMENT_BYTES),
            root_delta_bytes=get_int("root_delta_bytes", DEFAULT_ROOT_DELTA_BYTES),
            parted_delta_bytes=get_int("parted_delta_bytes", DEFAULT_PARTED_DELTA_BYTES),
            sfdisk_delta_bytes=get_int("sfdisk_delta_bytes", DEFAULT_SFDISK_DELTA_BYTES),
            sfdisk_max_size_bytes=get_int(
                "sfdisk_max_size_bytes", DEFAULT_SFDISK_MAX_SIZE_BYTES
            ),
            sfdisk_retry_attempts=get_int(
                "sfdisk_retry_attempts", DEFAULT_SFDISK_RETRY_ATTEMPTS
            ),
            sfdisk_retry_delay_seconds=get_float(
                "sfdisk_retry_delay_seconds", DEFAULT_SFDISK_RETRY_DELAY_SECONDS
            ),
            partitioner_type=str(get_setting("partitioner_type", "") or ""),
        )


load_settings()

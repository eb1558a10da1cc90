"""Parsers for partitioning tool output.

Formats handled:
    parted -m <device> unit B print
        BYT;
        /dev/vda:21474836480B:virtblk:512:512:msdos:Virtio Block Device;
        1:32256B:3071000063B:3070967808B:ext4::;

    sfdisk -d <device>
        # partition table of /dev/sda
        unit: sectors

        /dev/sda1 : start=     2048, size=  1048576, Id=82

    sfdisk -s <device> / lsblk --nodeps -nb -o SIZE <device>
        a single unsigned integer followed by a newline

None of these functions run commands; they only turn captured text into
domain objects, so they can be tested against recorded tool output.
"""

from __future__ import annotations

import re
from typing import Optional

from vm_disk_partitioner.domain.models import (
    Device,
    ExistingPartition,
    PartedListing,
    PartitionType,
    SfdiskEntry,
)
from vm_disk_partitioner.storage.exceptions import PartitionTableParseError


PARTED_MACHINE_MARKER = "BYT;"

PARTED_FSTYPES = {
    "ext4": PartitionType.LINUX,
    "xfs": PartitionType.LINUX,
    "linux-swap(v1)": PartitionType.SWAP,
    "fat16": PartitionType.EFI,
}

SFDISK_TYPE_IDS = {
    "82": PartitionType.SWAP,
    "83": PartitionType.LINUX,
    "0": PartitionType.EMPTY,
}

# Protective MBR entry written in front of a GUID partition table.
SFDISK_GPT_PROTECTIVE_ID = "ee"

_UNSIGNED_RE = re.compile(r"^\d+$", re.ASCII)
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")


def parse_unsigned(value: str, *, what: str, device: Optional[str] = None) -> int:
    """Parse an unsigned integer, tolerating a trailing byte ``B`` suffix."""
    cleaned = value.strip()
    if cleaned.endswith("B"):
        cleaned = cleaned[:-1]
    if not _UNSIGNED_RE.match(cleaned):
        raise PartitionTableParseError(
            f"Parsing {what}: '{value}' is not an unsigned integer",
            device=device,
            output=value,
        )
    return int(cleaned)


def partition_type_from_fstype(fstype: str) -> PartitionType:
    return PARTED_FSTYPES.get(fstype.strip(), PartitionType.UNKNOWN)


def parse_parted_listing(stdout: str, device_path: Optional[str] = None) -> PartedListing:
    """Parse machine-readable ``parted`` output in byte units.

    Raises:
        PartitionTableParseError: fewer than 3 lines, or a non-numeric offset
    """
    lines = stdout.split("\n")
    if len(lines) < 3:
        raise PartitionTableParseError(
            f"Parsing existing partitions of `{device_path}'",
            device=device_path,
            output=stdout,
        )

    start = 0
    for index, line in enumerate(lines):
        if line.strip() == PARTED_MACHINE_MARKER:
            start = index
            break
    if start + 1 >= len(lines):
        raise PartitionTableParseError(
            f"Parsing existing partitions of `{device_path}'",
            device=device_path,
            output=stdout,
        )

    device_line = lines[start + 1].strip().rstrip(";")
    device_fields = device_line.split(":")
    if len(device_fields) < 2:
        raise PartitionTableParseError(
            f"Parsing device line of `{device_path}': '{device_line}'",
            device=device_path,
            output=stdout,
        )
    full_size = parse_unsigned(device_fields[1], what="device size", device=device_path)
    table_type = device_fields[5] if len(device_fields) > 5 else ""
    device = Device(path=device_path or device_fields[0], full_size_in_bytes=full_size)

    partitions: list[ExistingPartition] = []
    for line in lines[start + 2 :]:
        stripped = line.strip()
        if not stripped:
            continue
        # ignore PReP boot partition on ppc64le
        if "prep" in stripped:
            continue
        partitions.append(_parse_parted_partition_line(stripped, device_path))

    return PartedListing(device=device, table_type=table_type, partitions=partitions)


def _parse_parted_partition_line(line: str, device_path: Optional[str]) -> ExistingPartition:
    fields = line.rstrip(";").split(":")
    if len(fields) < 4:
        raise PartitionTableParseError(
            f"Parsing existing partitions of `{device_path}': '{line}'",
            device=device_path,
            output=line,
        )
    index = parse_unsigned(fields[0], what="partition index", device=device_path)
    start = parse_unsigned(fields[1], what="partition start", device=device_path)
    end = parse_unsigned(fields[2], what="partition end", device=device_path)
    # reported size must be numeric, but the stored size is derived from the offsets
    parse_unsigned(fields[3], what="partition size", device=device_path)
    fstype = fields[4] if len(fields) > 4 else ""
    name = fields[5] if len(fields) > 5 else ""

    return ExistingPartition(
        index=index,
        start_in_bytes=start,
        end_in_bytes=end,
        size_in_bytes=end - start + 1,
        type=partition_type_from_fstype(fstype),
        name=name,
    )


def parse_sfdisk_fields(rest: str) -> dict[str, str]:
    """Parse ``start=..., size=..., Id=..`` into a dict (keys lowercased)."""
    fields: dict[str, str] = {}
    for entry in rest.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            key, value = entry.split("=", 1)
            fields[key.strip().lower()] = value.strip()
        else:
            fields[entry.lower()] = ""
    return fields


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    if _UNSIGNED_RE.match(value):
        return int(value)
    return None


def parse_sfdisk_dump(stdout: str) -> list[SfdiskEntry]:
    """Parse the partition lines of an ``sfdisk -d`` dump.

    The first three lines are the header and the last line is blank; only the
    lines in between are considered, and anything that is not a
    ``<path> : <fields>`` entry is skipped.
    """
    all_lines = stdout.split("\n")
    if len(all_lines) < 4:
        return []

    entries: list[SfdiskEntry] = []
    for line in all_lines[3:-1]:
        stripped = line.strip()
        if not stripped.startswith("/") or ":" not in stripped:
            continue
        prefix, rest = stripped.split(":", 1)
        partition_path = prefix.strip()
        fields = parse_sfdisk_fields(rest)
        type_id = fields.get("id", fields.get("type", "")).strip().lower()
        index_match = _TRAILING_DIGITS_RE.search(partition_path)
        entries.append(
            SfdiskEntry(
                partition_path=partition_path,
                index=int(index_match.group(1)) if index_match else len(entries) + 1,
                type=SFDISK_TYPE_IDS.get(type_id, PartitionType.UNKNOWN),
                type_id=type_id,
                start_sector=_optional_int(fields.get("start")),
                size_sectors=_optional_int(fields.get("size")),
            )
        )
    return entries


def sfdisk_dump_label(stdout: str) -> Optional[str]:
    """Return the ``label:`` header of a dump, if sfdisk printed one."""
    for line in stdout.splitlines():
        stripped = line.strip()
        if stripped.startswith("label:"):
            return stripped.split(":", 1)[1].strip().lower()
    return None


def sfdisk_dump_is_gpt(stdout: str, entries: list[SfdiskEntry]) -> bool:
    if sfdisk_dump_label(stdout) == "gpt":
        return True
    return any(entry.type_id == SFDISK_GPT_PROTECTIVE_ID for entry in entries)


def parse_size_output(stdout: str, device_path: Optional[str] = None) -> int:
    """Parse the single-integer output of a size-reporting tool."""
    return parse_unsigned(stdout.strip("\n"), what="block device size", device=device_path)

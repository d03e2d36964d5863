"""Extraction and flattening of executable entitlements."""

from __future__ import annotations

import base64
import logging
import math
import os
import plistlib
from datetime import datetime, timezone
from decimal import Decimal
from os import PathLike
from pathlib import Path
from typing import Any, Iterator
from xml.parsers.expat import ExpatError

from appledb.macho import MachOBinary, MachOError, path_is_macho
from appledb.models import ExecutableEntitlement, IPSWEntitlements

log = logging.getLogger(__name__)


class EntitlementValueError(ValueError):
    """Raised when an entitlements plist cannot be understood."""


def _format_real(number: float) -> str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "inf" if number > 0 else "-inf"
    if number.is_integer():
        text = str(int(number))
        return "-0" if number == 0 and math.copysign(1.0, number) < 0 else text
    return format(Decimal(repr(number)), "f")


def _format_date(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, datetime):
        return _format_date(value)
    if isinstance(value, float):
        return _format_real(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, plistlib.UID):
        return str(value.data)
    raise EntitlementValueError("unknown value type")


def flatten_entitlements(value: Any) -> set[ExecutableEntitlement]:
    """Flatten a plist value into dotted key/value entitlements.

    Nested dictionary keys are joined with dots; each array element becomes
    its own entry under the same key.
    """
    if isinstance(value, list):
        result: set[ExecutableEntitlement] = set()
        for item in value:
            result |= flatten_entitlements(item)
        return result
    if isinstance(value, dict):
        result = set()
        for key, sub_value in value.items():
            for entry in flatten_entitlements(sub_value):
                full_key = f"{key}.{entry.key}" if entry.key else key
                result.add(ExecutableEntitlement(full_key, entry.value))
        return result
    return {ExecutableEntitlement("", _scalar(value))}


def parse_entitlements_file(
    path: str | PathLike[str],
) -> set[ExecutableEntitlement] | None:
    """Entitlements of a Mach-O executable, or None if it has none or is no executable."""
    if not path_is_macho(path):
        return None
    data = Path(path).read_bytes()
    try:
        macho = MachOBinary.parse(data)
    except MachOError as exc:
        log.error("%s", exc)
        return None
    if not macho.is_executable():
        return None

    xml = macho.entitlements_xml()
    if xml is None:
        return None
    try:
        value = plistlib.loads(xml.encode("utf-8"))
    except (ValueError, ExpatError) as exc:
        raise EntitlementValueError(f"invalid entitlements plist: {exc}") from exc
    return flatten_entitlements(value)


def _walk(path: Path, is_root: bool = True) -> Iterator[Path]:
    yield path
    if path.is_dir() and (is_root or not path.is_symlink()):
        with os.scandir(path) as entries:
            children = sorted(entries, key=lambda entry: entry.name)
        for child in children:
            yield from _walk(Path(child.path), is_root=False)


def collect_entitlements(
    mount_point: str | PathLike[str], ipsw_entitlements: IPSWEntitlements
) -> IPSWEntitlements:
    """Add the entitlements of every executable under ``mount_point``."""
    for path in _walk(Path(mount_point)):
        try:
            if not path_is_macho(path):
                continue
        except OSError:
            continue
        try:
            entitlements = parse_entitlements_file(path)
        except (OSError, MachOError, EntitlementValueError) as exc:
            log.error("%s", exc)
            continue
        if entitlements is not None:
            ipsw_entitlements.add_executable_entitlements(path.name, entitlements)

    log.info(
        "Number of executables: %d", len(ipsw_entitlements.executable_entitlements)
    )
    return ipsw_entitlements
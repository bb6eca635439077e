"""Device id normalization and scan-result matching."""

from __future__ import annotations

import re
from collections.abc import Iterable

from am43ctl.core.errors import DeviceSelectionError

_ID_RE = re.compile(r"^[0-9a-f]{12}$")


def normalize_device_id(address: str) -> str:
    """Strip separators and lowercase a radio address: ``02:FC:98:A9:44:6B`` -> ``02fc98a9446b``."""
    return address.replace(":", "").replace("-", "").strip().lower()


def validate_device_id(address: str) -> str:
    device_id = normalize_device_id(address)
    if not _ID_RE.match(device_id):
        raise DeviceSelectionError(f"'{address}' is not a Bluetooth address")
    return device_id


def address_from_id(device_id: str) -> str:
    upper = device_id.upper()
    return ":".join(upper[i:i + 2] for i in range(0, len(upper), 2))


def match_wanted(addresses: Iterable[str], wanted: Iterable[str]) -> tuple[dict[str, str], list[str]]:
    """Split scan results into wanted ids (id -> address) and ignored addresses."""
    wanted_ids = set(wanted)
    matched: dict[str, str] = {}
    ignored: list[str] = []
    for address in addresses:
        device_id = normalize_device_id(address)
        if device_id in wanted_ids:
            matched.setdefault(device_id, address)
        else:
            ignored.append(address)
    return matched, ignored

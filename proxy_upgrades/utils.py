import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from proxy_upgrades.constants import ZERO_ADDRESS

STANDARD_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def _write_json_atomic(data: Any, filepath: Path) -> Path:
    """
    Serializes ``data`` next to ``filepath`` and swaps it into place, so
    readers see either the previous file or the new one, never a partial write.
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{filepath.name}.", suffix=".tmp", dir=filepath.parent
    )
    try:
        with os.fdopen(fd, "w") as file:
            json.dump(data, file, **STANDARD_JSON_FORMAT)
            file.flush()
            os.fsync(file.fileno())
        os.replace(temp_name, filepath)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return filepath


def address_from_slot(slot_value: bytes) -> Optional[ChecksumAddress]:
    """Extracts the address stored in the low 20 bytes of a storage slot."""
    address = to_checksum_address(bytes(slot_value)[-20:].rjust(20, b"\x00"))
    if address == ZERO_ADDRESS:
        return None
    return address


def short_address(address: str) -> str:
    return address[:10]

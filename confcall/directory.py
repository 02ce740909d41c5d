"""
Participant directory: who can be called and at which address.

The file is JSON (or YAML) shaped like::

    {"me": "10.0.0.1",
     "participants": [{"name": "Alice", "address": "10.0.0.1"},
                      {"name": "Bob", "address": "10.0.0.2"}]}
"""

from __future__ import annotations

import ipaddress
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

LOG = logging.getLogger(__name__)


class DirectoryError(RuntimeError):
    """Raised when the directory file cannot be read or is invalid."""


class DirectoryEntry(BaseModel):
    name: str = Field(min_length=1)
    address: str
    model_config = ConfigDict(frozen=True)

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        ipaddress.IPv4Address(value)
        return value


class Directory(BaseModel):
    me: str
    participants: List[DirectoryEntry] = Field(default_factory=list)
    model_config = ConfigDict(frozen=True)

    @field_validator("me")
    @classmethod
    def _check_me(cls, value: str) -> str:
        ipaddress.IPv4Address(value)
        return value

    def lookup_address(self, name: str) -> Optional[str]:
        for entry in self.participants:
            if entry.name == name:
                return entry.address
        return None

    def lookup_name(self, address: str) -> Optional[str]:
        for entry in self.participants:
            if entry.address == address:
                return entry.name
        return None

    def invitable(self) -> List[DirectoryEntry]:
        return [entry for entry in self.participants if entry.address != self.me]

    def names_by_address(self) -> Dict[str, str]:
        return {entry.address: entry.name for entry in self.participants}


def load_directory(path: Union[str, Path]) -> Directory:
    directory_path = Path(path)
    try:
        with directory_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise DirectoryError(f"Cannot read directory {directory_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise DirectoryError(f"Malformed directory {directory_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise DirectoryError(f"Directory {directory_path} must be a mapping with 'me' and 'participants'.")
    try:
        directory = Directory(**payload)
    except (TypeError, ValidationError) as exc:
        raise DirectoryError(f"Invalid directory {directory_path}: {exc}") from exc

    if directory.lookup_name(directory.me) is None:
        LOG.warning("Own address %s is not listed in %s", directory.me, directory_path)
    LOG.info("Loaded %d directory entries from %s", len(directory.participants), directory_path)
    return directory


__all__ = ["Directory", "DirectoryEntry", "DirectoryError", "load_directory"]

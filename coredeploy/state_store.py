"""
StateStore - Durable record of what a deployment has already done.

The StateStore manages the mapping name -> DeploymentRecord:
- Read whole once at the start of a run
- Rewritten whole after every state-changing step

Storage backends:
- In-memory (for testing)
- File-based JSON (the deployment output file)
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from web3 import Web3

from coredeploy.errors import StateError
from coredeploy.schemas import DeploymentRecord

logger = logging.getLogger(__name__)


def _validate_entry(name: str, data: object) -> DeploymentRecord:
    if not isinstance(data, dict):
        raise StateError(f"State entry '{name}' must be an object, got {type(data).__name__}")
    record = DeploymentRecord.from_dict(data)
    for key, value in (("address", record.address), ("implAddress", record.secondary_address)):
        if value is not None and not (isinstance(value, str) and Web3.is_address(value)):
            raise StateError(f"State entry '{name}' has an invalid {key}: {value!r}")
    return record


class StateStore(ABC):
    """
    Abstract base class for deployment state storage.

    Implementations must provide methods to:
    - Load every record
    - Replace every record (full overwrite, never a patch)
    """

    @abstractmethod
    def load(self) -> dict[str, DeploymentRecord]:
        """
        Load all records.

        Returns:
            Mapping of unit name to DeploymentRecord (empty if nothing stored)

        Raises:
            StateError: If stored data is malformed
        """
        pass

    @abstractmethod
    def save(self, records: dict[str, DeploymentRecord]) -> None:
        """
        Replace the stored records with `records`.

        Args:
            records: Complete mapping of unit name to DeploymentRecord
        """
        pass


class InMemoryStateStore(StateStore):
    """
    In-memory implementation of StateStore for testing.

    Keeps serialized snapshots so tests see exactly what a file would hold.
    """

    def __init__(self, initial: dict[str, dict] | None = None):
        self._data: dict[str, dict] = json.loads(json.dumps(initial or {}))
        self.save_count = 0

    def load(self) -> dict[str, DeploymentRecord]:
        return {name: _validate_entry(name, data) for name, data in self._data.items()}

    def save(self, records: dict[str, DeploymentRecord]) -> None:
        self._data = {name: record.to_dict() for name, record in records.items()}
        self.save_count += 1

    def snapshot(self) -> dict[str, dict]:
        """Return a deep copy of the stored data."""
        return json.loads(json.dumps(self._data))


class FileStateStore(StateStore):
    """
    JSON-file implementation of StateStore.

    The file is a single object keyed by unit name:
        {
          "ActivePool": {"address": "0x...", "txHash": "0x...", "implAddress": "0x..."},
          ...
        }

    Writes go to a temp file in the same directory and are moved into place,
    so an interrupted write never leaves a truncated state file.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, DeploymentRecord]:
        if not self._path.exists():
            logger.info(f"No previous deployment at {self._path}, starting fresh")
            return {}

        logger.info(f"Loading previous deployment from {self._path}...")
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Deployment state {self._path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise StateError(f"Deployment state {self._path} must contain an object")
        return {name: _validate_entry(name, entry) for name, entry in data.items()}

    def save(self, records: dict[str, DeploymentRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {name: record.to_dict() for name, record in records.items()}

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.write("\n")
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

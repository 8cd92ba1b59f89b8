"""
ArtifactStore - Load compiled contract artifacts from a Hardhat build.

Expected layout (as produced by `hardhat compile`):
    artifacts/
        contracts/Core/ActivePool.sol/
            ActivePool.json          # abi, bytecode, sourceName, contractName
            ActivePool.dbg.json      # {"buildInfo": "../../build-info/<hash>.json"}
        @openzeppelin/contracts/proxy/ERC1967/ERC1967Proxy.sol/
            ERC1967Proxy.json
        build-info/
            <hash>.json              # solcVersion, input (standard JSON)
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from coredeploy.errors import ConfigError


@dataclass(frozen=True)
class Artifact:
    contract_name: str
    source_name: str
    abi: list[dict[str, Any]]
    bytecode: str
    path: Path

    def constructor_inputs(self) -> list[str]:
        """ABI types of the constructor arguments."""
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return [i["type"] for i in entry.get("inputs", [])]
        return []


class ArtifactStore:
    """
    Lookup of artifacts by contract name.

    Results are cached; the artifact tree is scanned once on first use.
    """

    def __init__(self, artifacts_dir: Path | str):
        self._root = Path(artifacts_dir)
        self._index: Optional[dict[str, Path]] = None
        self._cache: dict[str, Artifact] = {}

    @property
    def root(self) -> Path:
        return self._root

    def _build_index(self) -> dict[str, Path]:
        if not self._root.exists():
            raise ConfigError(f"Artifacts directory not found: {self._root}")
        index: dict[str, Path] = {}
        for path in sorted(self._root.rglob("*.json")):
            if path.name.endswith(".dbg.json") or "build-info" in path.parts:
                continue
            # First match wins; contracts/ sorts before node_modules copies
            index.setdefault(path.stem, path)
        return index

    def load(self, contract_name: str) -> Artifact:
        """
        Load an artifact by contract name.

        Raises:
            ConfigError: If no artifact exists for the name
        """
        if contract_name in self._cache:
            return self._cache[contract_name]
        if self._index is None:
            self._index = self._build_index()

        path = self._index.get(contract_name)
        if path is None:
            raise ConfigError(f"No compiled artifact for {contract_name} under {self._root}")

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        artifact = Artifact(
            contract_name=data.get("contractName", contract_name),
            source_name=data.get("sourceName", ""),
            abi=data["abi"],
            bytecode=data.get("bytecode", "0x"),
            path=path,
        )
        self._cache[contract_name] = artifact
        return artifact

    def load_build_info(self, contract_name: str) -> dict[str, Any]:
        """
        Load the build-info (compiler version + standard JSON input) for a contract.

        Raises:
            ConfigError: If the debug file or build-info is missing
        """
        artifact = self.load(contract_name)
        dbg_path = artifact.path.with_name(f"{artifact.path.stem}.dbg.json")
        if not dbg_path.exists():
            raise ConfigError(f"No debug file for {contract_name}: {dbg_path}")
        with open(dbg_path, "r", encoding="utf-8") as f:
            build_info_ref = json.load(f)["buildInfo"]
        build_info_path = (dbg_path.parent / build_info_ref).resolve()
        if not build_info_path.exists():
            raise ConfigError(f"Build info missing for {contract_name}: {build_info_path}")
        with open(build_info_path, "r", encoding="utf-8") as f:
            return json.load(f)

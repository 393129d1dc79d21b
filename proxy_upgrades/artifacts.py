from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from eth_typing import ABI
from web3.auto import w3

from proxy_upgrades.errors import ArtifactNotFoundError, IncompatibleStorageLayoutError
from proxy_upgrades.utils import _load_json


class ImplementationArtifact(NamedTuple):
    """Compiled contract: what the chain client needs to deploy and talk to it."""

    name: str
    abi: ABI
    bytecode: str
    storage_layout: Optional[dict] = None

    def method_abis(self, method_name: str) -> List[dict]:
        return [
            entry
            for entry in self.abi
            if entry.get("type") == "function" and entry.get("name") == method_name
        ]

    def has_method(self, method_name: str) -> bool:
        return bool(self.method_abis(method_name))

    def is_read_only(self, method_name: str) -> bool:
        abis = self.method_abis(method_name)
        return bool(abis) and all(
            abi.get("stateMutability") in ("view", "pure") or abi.get("constant") for abi in abis
        )


def _bytecode_from(data: dict) -> str:
    bytecode = data.get("bytecode")
    if isinstance(bytecode, dict):
        # solc standard json / foundry
        bytecode = bytecode.get("object")
    if not bytecode and isinstance(data.get("deploymentBytecode"), dict):
        # ape / ethpm
        bytecode = data["deploymentBytecode"].get("bytecode")
    if not bytecode:
        return ""
    return bytecode if bytecode.startswith("0x") else f"0x{bytecode}"


def artifact_from_json(data: dict, name: Optional[str] = None) -> ImplementationArtifact:
    """Builds an artifact from Hardhat, solc/foundry or ape JSON output."""
    name = name or data.get("contractName") or data.get("name")
    if not name:
        raise ValueError("Artifact has no contract name.")
    if "abi" not in data:
        raise ValueError(f"Artifact for {name} has no ABI.")
    return ImplementationArtifact(
        name=name,
        abi=list(data["abi"]),
        bytecode=_bytecode_from(data),
        storage_layout=data.get("storageLayout"),
    )


class ArtifactStore:
    """
    Finds compiled artifacts by contract name under an artifacts directory,
    e.g. Hardhat's ``artifacts/contracts/CounterV1.sol/CounterV1.json``.
    """

    def __init__(self, artifacts_dir: Path):
        self.artifacts_dir = Path(artifacts_dir)
        self._cache: Dict[str, ImplementationArtifact] = dict()

    def _find_filepath(self, name: str) -> Path:
        if not self.artifacts_dir.exists():
            raise ArtifactNotFoundError(f"Artifacts directory {self.artifacts_dir} does not exist.")
        candidates = [
            p for p in sorted(self.artifacts_dir.rglob(f"{name}.json")) if ".dbg" not in p.suffixes
        ]
        if not candidates:
            raise ArtifactNotFoundError(f"No artifact found for '{name}' in {self.artifacts_dir}.")
        if len(candidates) != 1:
            raise ArtifactNotFoundError(
                f"Artifact '{name}' is ambiguous - expected exactly one file, "
                f"got {len(candidates)}: {', '.join(map(str, candidates))}"
            )
        return candidates[0]

    def get(self, name: str) -> ImplementationArtifact:
        if name not in self._cache:
            filepath = self._find_filepath(name)
            self._cache[name] = artifact_from_json(_load_json(filepath), name=name)
        return self._cache[name]


#
# ABI validation
#


def validate_method_args(method_abis: List[dict], args: Sequence[Any]) -> Dict[str, Any]:
    """Validates call arguments against the ABI(s) of a function; returns them by name."""
    if len(method_abis) == 0:
        raise ValueError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi["inputs"]) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for position, (arg, abi_input) in enumerate(zip(args, abi["inputs"])):
            if not w3.is_encodable(abi_input["type"], arg):
                break
            named_args[abi_input.get("name") or f"arg{position}"] = arg
        else:
            return named_args
    raise ValueError(
        f"Could not find ABI for '{method_abis[0]['name']}' with {len(args)} arg(s) and given type(s)"
    )


#
# Storage layout
#


def _storage_type_label(layout: dict, type_id: str) -> str:
    types = layout.get("types") or dict()
    return types.get(type_id, {}).get("label", type_id)


def check_storage_layout(
    current: ImplementationArtifact, new: ImplementationArtifact
) -> bool:
    """
    Checks that ``new`` keeps every variable of ``current`` at the same slot
    and offset with the same name and type; appending variables is allowed.
    Returns False when either artifact carries no storage layout.
    """
    if not current.storage_layout or not new.storage_layout:
        return False

    new_vars = {
        (int(var["slot"]), int(var.get("offset", 0))): var
        for var in new.storage_layout.get("storage", [])
    }
    for var in current.storage_layout.get("storage", []):
        position = (int(var["slot"]), int(var.get("offset", 0)))
        replacement = new_vars.get(position)
        if replacement is None:
            raise IncompatibleStorageLayoutError(
                f"{new.name} drops '{var['label']}' (slot {position[0]}) of {current.name}."
            )
        if replacement["label"] != var["label"]:
            raise IncompatibleStorageLayoutError(
                f"{new.name} replaces '{var['label']}' with '{replacement['label']}' "
                f"at slot {position[0]}."
            )
        old_type = _storage_type_label(current.storage_layout, var["type"])
        new_type = _storage_type_label(new.storage_layout, replacement["type"])
        if old_type != new_type:
            raise IncompatibleStorageLayoutError(
                f"{new.name} changes the type of '{var['label']}' from {old_type} to {new_type}."
            )
    return True

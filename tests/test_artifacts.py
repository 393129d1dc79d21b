import json
from pathlib import Path

import pytest

from proxy_upgrades.artifacts import (
    ArtifactStore,
    artifact_from_json,
    check_storage_layout,
    validate_method_args,
)
from proxy_upgrades.constants import PROXY_CONTRACT_TYPE
from proxy_upgrades.errors import ArtifactNotFoundError, IncompatibleStorageLayoutError
from tests.conftest import (
    COUNTER_LAYOUT,
    COUNTER_V1_ABI,
    COUNTER_V2_ABI,
    PROXY_ABI,
    storage_layout,
    write_artifact,
)

OZ_PROXY_SOURCE = "@openzeppelin/contracts/proxy/transparent/TransparentUpgradeableProxy.sol"


def test_get_hardhat_artifact(artifacts):
    artifact = artifacts.get("CounterV2")
    assert artifact.name == "CounterV2"
    assert artifact.bytecode.startswith("0x")
    assert artifact.has_method("increaseValue")
    assert artifact.is_read_only("getValue")
    assert not artifact.is_read_only("setValue")
    assert artifact.storage_layout == COUNTER_LAYOUT


def test_get_missing_artifact(artifacts, tmp_path):
    with pytest.raises(ArtifactNotFoundError):
        artifacts.get("CounterV3")
    with pytest.raises(ArtifactNotFoundError):
        ArtifactStore(tmp_path / "nowhere").get("CounterV1")


def test_ambiguous_artifact(artifacts_dir):
    write_artifact(artifacts_dir, "CounterV1", COUNTER_V1_ABI, source="legacy/Counter")
    with pytest.raises(ArtifactNotFoundError, match="ambiguous"):
        ArtifactStore(artifacts_dir).get("CounterV1")


def test_debug_files_are_ignored(artifacts_dir):
    debug = artifacts_dir / "contracts" / "CounterV1.sol" / "CounterV1.dbg.json"
    debug.write_text('{"buildInfo": "../../build-info/abc.json"}')
    assert ArtifactStore(artifacts_dir).get("CounterV1").name == "CounterV1"


def test_openzeppelin_proxy_artifact(tmp_path):
    # contracts/Proxy.sol pulls the OZ5 proxy into the compilation
    source = Path(__file__).parents[1] / "contracts" / "Proxy.sol"
    assert f'import "{OZ_PROXY_SOURCE}";' in source.read_text()

    # hardhat writes artifacts of imported sources under their import path
    directory = tmp_path / "artifacts" / OZ_PROXY_SOURCE
    directory.mkdir(parents=True)
    (directory / f"{PROXY_CONTRACT_TYPE}.json").write_text(
        json.dumps(
            {
                "contractName": PROXY_CONTRACT_TYPE,
                "sourceName": OZ_PROXY_SOURCE,
                "abi": PROXY_ABI,
                "bytecode": "0x6080604052",
            }
        )
    )
    artifact = ArtifactStore(tmp_path / "artifacts").get(PROXY_CONTRACT_TYPE)
    assert artifact.name == PROXY_CONTRACT_TYPE
    assert artifact.abi == PROXY_ABI


def test_artifact_formats():
    foundry = artifact_from_json({"abi": COUNTER_V1_ABI, "bytecode": {"object": "6080"}}, "CounterV1")
    assert foundry.bytecode == "0x6080"

    ape = artifact_from_json(
        {"contractName": "CounterV1", "abi": COUNTER_V1_ABI, "deploymentBytecode": {"bytecode": "0x6080"}}
    )
    assert ape.name == "CounterV1"
    assert ape.bytecode == "0x6080"

    with pytest.raises(ValueError):
        artifact_from_json({"contractName": "CounterV1"})


def test_validate_method_args():
    abis = [e for e in COUNTER_V2_ABI if e.get("name") == "increaseValue"]
    assert validate_method_args(abis, [25]) == {"_amount": 25}
    with pytest.raises(ValueError):
        validate_method_args(abis, [25, 26])
    with pytest.raises(ValueError):
        validate_method_args(abis, ["twenty-five"])


def test_storage_layout_append_is_compatible(artifacts):
    current = artifacts.get("CounterV1")
    new = current._replace(
        name="CounterV3",
        storage_layout=storage_layout(
            ("_initialized", "uint64"),
            ("_initializing", "bool"),
            ("value", "uint256"),
            ("step", "uint256"),
        ),
    )
    assert check_storage_layout(current, new) is True


@pytest.mark.parametrize(
    "variables",
    [
        # dropped
        [("_initialized", "uint64"), ("_initializing", "bool")],
        # renamed
        [("_initialized", "uint64"), ("_initializing", "bool"), ("count", "uint256")],
        # retyped
        [("_initialized", "uint64"), ("_initializing", "bool"), ("value", "int128")],
        # reordered
        [("value", "uint256"), ("_initialized", "uint64"), ("_initializing", "bool")],
    ],
)
def test_storage_layout_incompatible(artifacts, variables):
    current = artifacts.get("CounterV1")
    new = current._replace(name="CounterV3", storage_layout=storage_layout(*variables))
    with pytest.raises(IncompatibleStorageLayoutError):
        check_storage_layout(current, new)


def test_storage_layout_check_skipped_without_layout(artifacts):
    current = artifacts.get("CounterV1")
    assert check_storage_layout(current, current._replace(storage_layout=None)) is False

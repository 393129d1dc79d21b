import json
from pathlib import Path

import pytest
from eth_utils import to_checksum_address

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.config import Config
from proxy_upgrades.deployer import UpgradeDeployer
from proxy_upgrades.invocation import InvocationClient
from proxy_upgrades.registry import ContractRegistry
from tests.fake_chain import FakeNetwork

# Common constants
CHAIN_ID = 1337
OTHER_CHAIN_ID = 97
TEST_PRIVATE_KEY = "0x" + "11" * 32
DEPLOYER_ADDRESS = to_checksum_address("0x00000000000000000000000000000000000000aa")
STRANGER_ADDRESS = to_checksum_address("0x00000000000000000000000000000000000000bb")


def _function(name, inputs=(), mutability="nonpayable", outputs=()):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t, "internalType": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t, "internalType": t} for t in outputs],
    }


def storage_layout(*variables):
    """Solc storageLayout output for ``(label, type label)`` pairs, one slot each."""
    storage, types = list(), dict()
    for slot, (label, type_label) in enumerate(variables):
        type_id = f"t_{type_label}"
        storage.append({"label": label, "offset": 0, "slot": str(slot), "type": type_id})
        types[type_id] = {"encoding": "inplace", "label": type_label, "numberOfBytes": "32"}
    return {"storage": storage, "types": types}


COUNTER_V1_ABI = [
    {"type": "constructor", "inputs": [], "stateMutability": "nonpayable"},
    _function("initialize", [("_value", "uint256")]),
    _function("setValue", [("_value", "uint256")]),
    _function("getValue", mutability="view", outputs=["uint256"]),
]

COUNTER_V2_ABI = COUNTER_V1_ABI + [_function("increaseValue", [("_amount", "uint256")])]

PROXY_ABI = [
    {
        "type": "constructor",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_logic", "type": "address", "internalType": "address"},
            {"name": "initialOwner", "type": "address", "internalType": "address"},
            {"name": "_data", "type": "bytes", "internalType": "bytes"},
        ],
    },
]

COUNTER_LAYOUT = storage_layout(
    ("_initialized", "uint64"), ("_initializing", "bool"), ("value", "uint256")
)


def write_artifact(artifacts_dir: Path, name: str, abi, storage_layout=None, source=None) -> Path:
    """Writes a Hardhat style artifact, e.g. ``contracts/CounterV1.sol/CounterV1.json``."""
    directory = artifacts_dir / "contracts" / f"{source or name}.sol"
    directory.mkdir(parents=True, exist_ok=True)
    data = {
        "_format": "hh-sol-artifact-1",
        "contractName": name,
        "sourceName": f"contracts/{source or name}.sol",
        "abi": abi,
        "bytecode": "0x6080604052",
        "deployedBytecode": "0x6080604052",
    }
    if storage_layout is not None:
        data["storageLayout"] = storage_layout
    filepath = directory / f"{name}.json"
    filepath.write_text(json.dumps(data))
    return filepath


# Fixtures
@pytest.fixture
def artifacts_dir(tmp_path):
    directory = tmp_path / "artifacts"
    write_artifact(directory, "CounterV1", COUNTER_V1_ABI, COUNTER_LAYOUT)
    write_artifact(directory, "CounterV2", COUNTER_V2_ABI, COUNTER_LAYOUT)
    write_artifact(directory, "FrozenCounter", COUNTER_V1_ABI, COUNTER_LAYOUT)
    write_artifact(directory, "TransparentUpgradeableProxy", PROXY_ABI, source="proxy")
    return directory


@pytest.fixture
def registry_filepath(tmp_path):
    return tmp_path / "deployments" / "registry.json"


@pytest.fixture
def config(registry_filepath, artifacts_dir):
    return Config(
        rpc_url="http://127.0.0.1:8545",
        private_key=TEST_PRIVATE_KEY,
        chain_id=CHAIN_ID,
        min_confirmations=1,
        confirmation_timeout=2,
        poll_interval=0.01,
        registry_filepath=registry_filepath,
        artifacts_dir=artifacts_dir,
        autosign=True,
    )


@pytest.fixture
def network():
    return FakeNetwork(chain_id=CHAIN_ID)


@pytest.fixture
def chain(network):
    return network.client(DEPLOYER_ADDRESS)


@pytest.fixture
def stranger_chain(network):
    return network.client(STRANGER_ADDRESS)


@pytest.fixture
def registry(registry_filepath):
    return ContractRegistry(filepath=registry_filepath, chain_id=CHAIN_ID)


@pytest.fixture
def artifacts(artifacts_dir):
    return ArtifactStore(artifacts_dir)


@pytest.fixture
def deployer(chain, registry, artifacts, config):
    return UpgradeDeployer(chain, registry, artifacts, config)


@pytest.fixture
def client(chain, registry, artifacts, config):
    return InvocationClient(chain, registry, artifacts, config)

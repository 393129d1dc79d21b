import threading

import pytest

from proxy_upgrades.constants import EIP1967_ADMIN_SLOT, EIP1967_IMPLEMENTATION_SLOT
from proxy_upgrades.deployer import UpgradeDeployer
from proxy_upgrades.errors import (
    ConfigurationError,
    IncompatibleStorageLayoutError,
    UnauthorizedUpgradeError,
)
from proxy_upgrades.params import DeploymentRequest
from proxy_upgrades.registry import ContractRegistry
from proxy_upgrades.utils import address_from_slot
from tests.conftest import CHAIN_ID, COUNTER_V2_ABI, DEPLOYER_ADDRESS, storage_layout, write_artifact

INITIAL_VALUE = 23


def _value_of(network, record):
    return network.contracts[record.proxy_address].storage.get("value")


def test_first_deployment(deployer, network, registry, registry_filepath):
    request = DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    record = deployer.deploy_or_upgrade(request)

    assert record.chain_id == CHAIN_ID
    assert record.contract_type == "CounterV1"
    assert record.deployer == DEPLOYER_ADDRESS
    assert len(record.history) == 1

    # the proxy runs the initializer exactly once, at construction
    assert _value_of(network, record) == INITIAL_VALUE
    proxy = network.contracts[record.proxy_address]
    assert proxy.slots[EIP1967_IMPLEMENTATION_SLOT] == record.implementation
    admin = network.contracts[proxy.slots[EIP1967_ADMIN_SLOT]]
    assert admin.owner == DEPLOYER_ADDRESS

    # written through
    reloaded = ContractRegistry(filepath=registry_filepath, chain_id=CHAIN_ID)
    assert reloaded.lookup("Counter") == record
    assert registry.lookup("Counter") == record


def test_deployment_defaults_contract_type_to_name(deployer, artifacts_dir):
    write_artifact(artifacts_dir, "Counter", COUNTER_V2_ABI)
    record = deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", initializer_args=(1,)))
    assert record.contract_type == "Counter"


def test_deployment_with_invalid_initializer_args(deployer, registry, network):
    request = DeploymentRequest(name="Counter", initializer_args=("many",), contract_type="CounterV1")
    with pytest.raises(ValueError):
        deployer.deploy_or_upgrade(request)
    assert "Counter" not in registry
    assert network.transactions == []


def test_upgrade_preserves_proxy_and_state(deployer, network):
    first = deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    record = deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))

    assert record.proxy_address == first.proxy_address
    assert record.implementation != first.implementation
    assert record.contract_type == "CounterV2"
    assert [e.address for e in record.history] == [first.implementation, record.implementation]
    assert deployer.implementation_of(record.proxy_address) == record.implementation
    assert _value_of(network, record) == INITIAL_VALUE


def test_repeated_upgrades_grow_history(deployer):
    deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    upgrades = 3
    for _ in range(upgrades):
        record = deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))
    assert len(record.history) == upgrades + 1
    assert len({e.address for e in record.history}) == upgrades + 1


def test_upgrade_ignores_initializer_args(deployer, network, capsys):
    deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    capsys.readouterr()

    record = deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(99,), contract_type="CounterV2")
    )
    captured = capsys.readouterr()
    assert "WARNING" in captured.out
    assert "initializer" in captured.out
    assert _value_of(network, record) == INITIAL_VALUE
    assert record.contract_type == "CounterV2"


def test_upgrade_without_storage_layout_warns(deployer, artifacts_dir, capsys):
    deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    write_artifact(artifacts_dir, "Counter", COUNTER_V2_ABI)
    capsys.readouterr()

    record = deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="Counter"))
    out = capsys.readouterr().out
    assert "WARNING" in out
    assert "skipping the storage layout check" in out
    assert record.contract_type == "Counter"


def test_upgrade_of_unknown_implementation_type_warns(deployer, network, chain, capsys):
    record = deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    admin = address_from_slot(chain.get_storage_at(record.proxy_address, EIP1967_ADMIN_SLOT))
    implementation = network.create("CounterV1", [], DEPLOYER_ADDRESS)
    network.invoke(admin, "upgradeAndCall", [record.proxy_address, implementation, b""], DEPLOYER_ADDRESS)
    assert deployer.reconcile("Counter").contract_type is None
    capsys.readouterr()

    deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))
    out = capsys.readouterr().out
    assert "is unknown; skipping the storage layout check" in out


def test_unauthorized_upgrade(deployer, network, registry, artifacts, config, stranger_chain, capsys):
    record = deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    transactions = list(network.transactions)
    capsys.readouterr()

    stranger = UpgradeDeployer(stranger_chain, registry, artifacts, config)
    with pytest.raises(UnauthorizedUpgradeError):
        stranger.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))
    with pytest.raises(PermissionError):
        stranger.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))

    assert "SECURITY" in capsys.readouterr().err
    # refused before anything was sent
    assert network.transactions == transactions
    assert registry.lookup("Counter") == record
    assert deployer.implementation_of(record.proxy_address) == record.implementation


def test_incompatible_storage_layout_refused(deployer, artifacts_dir, network, registry):
    deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    write_artifact(
        artifacts_dir,
        "BrokenCounter",
        COUNTER_V2_ABI,
        storage_layout(("_initialized", "uint64"), ("_initializing", "bool"), ("count", "uint256")),
    )
    transactions = list(network.transactions)
    with pytest.raises(IncompatibleStorageLayoutError):
        deployer.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="BrokenCounter"))
    assert network.transactions == transactions
    assert len(registry.lookup("Counter").history) == 1


def test_request_for_another_network(deployer):
    request = DeploymentRequest(name="Counter", initializer_args=(1,), network=97, contract_type="CounterV1")
    with pytest.raises(ConfigurationError):
        deployer.deploy_or_upgrade(request)


def test_registry_for_another_chain(chain, artifacts, config, registry_filepath):
    registry = ContractRegistry(filepath=registry_filepath, chain_id=97)
    with pytest.raises(ConfigurationError):
        UpgradeDeployer(chain, registry, artifacts, config)


def test_concurrent_requests_for_one_name(deployer, network, registry):
    requests = [
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV2")
        for _ in range(4)
    ]
    records = deployer.deploy_or_upgrade_many(requests)

    # one proxy, then upgrades behind it
    assert len({r.proxy_address for r in records}) == 1
    record = registry.lookup("Counter")
    assert len(record.history) == len(requests)
    proxies = [c for c in network.contracts.values() if c.kind == "proxy"]
    assert len(proxies) == 1


def test_concurrent_requests_for_many_names(deployer, registry):
    names = [f"Counter{i}" for i in range(5)]
    barrier = threading.Barrier(len(names), timeout=5)
    original = deployer._deploy

    def deploy(request):
        barrier.wait()
        return original(request)

    deployer._deploy = deploy
    requests = [
        DeploymentRequest(name=name, initializer_args=(i,), contract_type="CounterV1")
        for i, name in enumerate(names)
    ]
    records = deployer.deploy_or_upgrade_many(requests, max_workers=len(names))

    assert [r.name for r in records] == names
    assert len({r.proxy_address for r in records}) == len(names)
    assert [r.name for r in registry.records()] == names


def test_concurrency_requires_autosign(chain, registry, artifacts, config):
    deployer = UpgradeDeployer(chain, registry, artifacts, config._replace(autosign=False))
    requests = [DeploymentRequest(name=n, contract_type="CounterV1") for n in ("A", "B")]
    with pytest.raises(ConfigurationError):
        deployer.deploy_or_upgrade_many(requests)


def test_reconcile(deployer, network, registry, chain):
    record = deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    assert deployer.reconcile("Counter") == record

    # upgraded out-of-band, e.g. by a multisig holding the admin
    admin = address_from_slot(chain.get_storage_at(record.proxy_address, EIP1967_ADMIN_SLOT))
    implementation = network.create("CounterV2", [], DEPLOYER_ADDRESS)
    network.invoke(admin, "upgradeAndCall", [record.proxy_address, implementation, b""], DEPLOYER_ADDRESS)

    reconciled = deployer.reconcile("Counter")
    assert reconciled.implementation == implementation
    assert reconciled.contract_type is None
    assert len(reconciled.history) == 2
    assert registry.lookup("Counter") == reconciled


def test_declined_deployment(chain, registry, artifacts, config, network, monkeypatch):
    deployer = UpgradeDeployer(chain, registry, artifacts, config._replace(autosign=False))
    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    with pytest.raises(SystemExit):
        deployer.deploy_or_upgrade(
            DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
        )
    assert network.transactions == []
    assert "Counter" not in registry


def test_confirmed_upgrade(deployer, chain, registry, artifacts, config, monkeypatch):
    deployer.deploy_or_upgrade(
        DeploymentRequest(name="Counter", initializer_args=(INITIAL_VALUE,), contract_type="CounterV1")
    )
    prompts = list()

    def answer(prompt):
        prompts.append(prompt)
        return "y"

    monkeypatch.setattr("builtins.input", answer)
    interactive = UpgradeDeployer(chain, registry, artifacts, config._replace(autosign=False))
    record = interactive.deploy_or_upgrade(DeploymentRequest(name="Counter", contract_type="CounterV2"))
    assert record.contract_type == "CounterV2"
    assert prompts[0].startswith("Upgrade Counter")
    assert any(p.startswith("Continue") for p in prompts)

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Sequence, Tuple

import click
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from proxy_upgrades.artifacts import (
    ArtifactStore,
    ImplementationArtifact,
    check_storage_layout,
    validate_method_args,
)
from proxy_upgrades.chain import ChainClient, Receipt
from proxy_upgrades.config import Config
from proxy_upgrades.confirm import _confirm_resolution, _confirm_upgrade
from proxy_upgrades.constants import (
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
    INITIALIZER_FUNCTION,
    OWNABLE_UNAUTHORIZED_ACCOUNT,
    PROXY_ADMIN_ABI,
    PROXY_ADMIN_CONTRACT_TYPE,
    PROXY_CONTRACT_TYPE,
)
from proxy_upgrades.errors import (
    ConfigurationError,
    TransactionRevertedError,
    UnauthorizedUpgradeError,
    UpgradesError,
)
from proxy_upgrades.params import DeploymentParameters, DeploymentRequest
from proxy_upgrades.registry import ContractRecord, ContractRegistry
from proxy_upgrades.transactions import Transactor
from proxy_upgrades.utils import address_from_slot


class UpgradeDeployer(Transactor):
    """
    Deploys a logical contract behind a TransparentUpgradeableProxy the first
    time it is requested and upgrades the proxy's implementation afterwards.
    The registry is only written once every transaction is confirmed.
    """

    def __init__(
        self,
        chain: ChainClient,
        registry: ContractRegistry,
        artifacts: ArtifactStore,
        config: Config,
    ):
        super().__init__(chain, config)
        if registry.chain_id != chain.chain_id:
            raise ConfigurationError(
                f"Registry is for chain {registry.chain_id} but the network is chain {chain.chain_id}."
            )
        self.registry = registry
        self.artifacts = artifacts

    def deploy_or_upgrade(self, request: DeploymentRequest) -> ContractRecord:
        if request.network is not None and int(request.network) != self.chain.chain_id:
            raise ConfigurationError(
                f"{request.name} targets chain {request.network} "
                f"but the network is chain {self.chain.chain_id}."
            )
        with self.registry.lock(request.name):
            if request.name in self.registry:
                return self._upgrade(request)
            return self._deploy(request)

    def deploy_or_upgrade_many(
        self, requests: Sequence[DeploymentRequest], max_workers: int = 4
    ) -> List[ContractRecord]:
        """
        Runs requests concurrently; requests for the same name still
        serialize on the registry lock. Results keep the order of ``requests``.
        """
        if not self._autosign and len(requests) > 1:
            raise ConfigurationError("Concurrent deployments require autosign.")
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self.deploy_or_upgrade, request) for request in requests]
            return [future.result() for future in futures]

    def deploy_from_parameters(self, parameters: DeploymentParameters) -> List[ContractRecord]:
        """Deploys or upgrades every contract of a parameters file, in file order."""
        parameters.validate(self.artifacts)
        records = list()
        for contract_name in parameters.contract_names:
            records.append(self.deploy_or_upgrade(parameters.request(contract_name)))
        return records

    #
    # Deployment
    #

    def _deploy_contract(
        self, artifact: ImplementationArtifact, args: Sequence[Any] = ()
    ) -> Receipt:
        handle = self.submit_deployment(artifact, args)
        receipt = self.await_confirmation(handle)
        if not receipt.contract_address:
            raise UpgradesError(f"{artifact.name} deployment {receipt.tx_hash} created no contract.")
        return receipt

    def _encode_initializer(
        self, artifact: ImplementationArtifact, args: Sequence[Any]
    ) -> Tuple[OrderedDict, bytes]:
        initializer_abis = artifact.method_abis(INITIALIZER_FUNCTION)
        if not initializer_abis:
            if args:
                raise ValueError(
                    f"{artifact.name} has no '{INITIALIZER_FUNCTION}' function "
                    f"but {len(args)} initializer argument(s) were given."
                )
            return OrderedDict(), b""
        named_args = validate_method_args(method_abis=initializer_abis, args=args)
        data = self.chain.encode_call(artifact.abi, INITIALIZER_FUNCTION, args)
        return OrderedDict(named_args), data

    def _deploy(self, request: DeploymentRequest) -> ContractRecord:
        artifact = self.artifacts.get(request.implementation_type)
        proxy_artifact = self.artifacts.get(PROXY_CONTRACT_TYPE)
        named_args, initializer_data = self._encode_initializer(artifact, request.initializer_args)
        if not self._autosign:
            _confirm_resolution(named_args, request.name)

        implementation = self._deploy_contract(artifact)
        print(f"\nDeploying {PROXY_CONTRACT_TYPE} contract to proxy {request.name}.")
        # OpenZeppelin 5 proxies create their ProxyAdmin, owned by initialOwner,
        # and run the initializer exactly once in the constructor.
        proxy = self._deploy_contract(
            proxy_artifact,
            [implementation.contract_address, self.account_address, initializer_data],
        )
        print(
            f"\nWrapping {request.name} into {PROXY_CONTRACT_TYPE} "
            f"(as type {artifact.name}) at {proxy.contract_address}."
        )
        return self.registry.record_deployment(
            name=request.name,
            proxy_address=proxy.contract_address,
            implementation_address=implementation.contract_address,
            contract_type=artifact.name,
            deployed_at=self.chain.get_block_timestamp(implementation.block_number),
            tx_hash=implementation.tx_hash,
            block_number=implementation.block_number,
            deployer=self.account_address,
        )

    #
    # Upgrade
    #

    def admin_of(self, proxy_address: ChecksumAddress) -> ChecksumAddress:
        """ProxyAdmin address from the proxy's EIP-1967 admin slot."""
        admin_address = address_from_slot(self.chain.get_storage_at(proxy_address, EIP1967_ADMIN_SLOT))
        if admin_address is None:
            raise ValueError(
                f"Admin slot for contract at {proxy_address} is empty. "
                "Are you sure this is an EIP1967-compatible proxy?"
            )
        return admin_address

    def implementation_of(self, proxy_address: ChecksumAddress) -> Optional[ChecksumAddress]:
        """Current implementation from the proxy's EIP-1967 implementation slot."""
        return address_from_slot(
            self.chain.get_storage_at(proxy_address, EIP1967_IMPLEMENTATION_SLOT)
        )

    def _reject_upgrade(self, record: ContractRecord, admin_owner: Optional[str]) -> None:
        click.secho(
            f"SECURITY: {self.account_address} is not the upgrade admin of {record.name} "
            f"(proxy {record.proxy_address}, admin owner {admin_owner or 'unknown'}). "
            "Upgrade refused.",
            fg="red",
            err=True,
        )
        raise UnauthorizedUpgradeError(
            f"{self.account_address} is not authorized to upgrade {record.name} "
            f"at {record.proxy_address}."
        )

    def _upgrade(self, request: DeploymentRequest) -> ContractRecord:
        record = self.registry.lookup(request.name)
        if request.initializer_args:
            click.secho(
                f"WARNING: Ignoring {len(request.initializer_args)} initializer argument(s) "
                f"for {request.name}: upgrades never re-run initialization, "
                "re-initializing would silently overwrite existing state.",
                fg="yellow",
            )

        admin_address = self.admin_of(record.proxy_address)
        admin_owner = to_checksum_address(self.chain.call(admin_address, PROXY_ADMIN_ABI, "owner"))
        if admin_owner != self.account_address:
            self._reject_upgrade(record, admin_owner)

        artifact = self.artifacts.get(request.implementation_type)
        if record.contract_type:
            current = self.artifacts.get(record.contract_type)
            if check_storage_layout(current, artifact):
                print(f"(i) Storage layout of {artifact.name} is compatible with {current.name}.")
            else:
                click.secho(
                    f"WARNING: No storage layout for {current.name} or {artifact.name}; "
                    "skipping the storage layout check.",
                    fg="yellow",
                )
        else:
            click.secho(
                f"WARNING: Implementation type of {request.name} is unknown; "
                "skipping the storage layout check.",
                fg="yellow",
            )
        if not self._autosign:
            _confirm_upgrade(request.name, record.proxy_address, artifact.name)

        implementation = self._deploy_contract(artifact)
        handle = self.submit_call(
            admin_address,
            PROXY_ADMIN_ABI,
            "upgradeAndCall",
            [record.proxy_address, implementation.contract_address, b""],
            contract_name=PROXY_ADMIN_CONTRACT_TYPE,
        )
        try:
            self.await_confirmation(handle)
        except TransactionRevertedError as e:
            if e.reason and OWNABLE_UNAUTHORIZED_ACCOUNT in e.reason:
                self._reject_upgrade(record, admin_owner=None)
            raise

        current_implementation = self.implementation_of(record.proxy_address)
        if current_implementation != implementation.contract_address:
            raise UpgradesError(
                f"Proxy {record.proxy_address} points at {current_implementation} "
                f"after upgrading to {implementation.contract_address}."
            )
        print(f"(i) Upgraded {request.name} at {record.proxy_address} to {artifact.name}.")
        return self.registry.record_upgrade(
            name=request.name,
            new_implementation_address=implementation.contract_address,
            contract_type=artifact.name,
            deployed_at=self.chain.get_block_timestamp(implementation.block_number),
            tx_hash=implementation.tx_hash,
            block_number=implementation.block_number,
        )

    #
    # Reconciliation
    #

    def reconcile(self, name: str) -> ContractRecord:
        """
        Brings the registry in line with the chain: if the proxy points
        somewhere other than the last recorded implementation, that
        implementation is appended to the history.
        """
        with self.registry.lock(name):
            record = self.registry.lookup(name)
            on_chain = self.implementation_of(record.proxy_address)
            if on_chain is None or on_chain == record.implementation:
                print(f"(i) {name} is in sync with the chain.")
                return record
            click.secho(
                f"WARNING: {name} proxy points at {on_chain} but the registry "
                f"has {record.implementation}; recording the on-chain implementation.",
                fg="yellow",
            )
            block_number = self.chain.block_number
            return self.registry.record_upgrade(
                name=name,
                new_implementation_address=on_chain,
                deployed_at=self.chain.get_block_timestamp(block_number),
                block_number=block_number,
            )

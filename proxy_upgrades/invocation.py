import threading
from typing import Any, NamedTuple, Optional, Tuple, Union

from eth_typing import ABI, ChecksumAddress
from eth_utils import to_checksum_address

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.chain import ChainClient, Receipt
from proxy_upgrades.config import Config
from proxy_upgrades.registry import ContractRegistry
from proxy_upgrades.transactions import PendingTransaction, Transactor


class InvocationRequest(NamedTuple):
    """
    A function call against a proxy, addressed either by logical name or by
    an explicit proxy address (which then needs an ``abi`` or ``contract_type``).
    """

    function_name: str
    args: Tuple[Any, ...] = ()
    is_state_mutating: bool = False
    name: Optional[str] = None
    proxy_address: Optional[ChecksumAddress] = None
    abi: Optional[ABI] = None
    contract_type: Optional[str] = None


class InvocationClient(Transactor):
    """Reads from and transacts with whatever implementation a proxy currently runs."""

    def __init__(
        self,
        chain: ChainClient,
        registry: ContractRegistry,
        artifacts: ArtifactStore,
        config: Config,
    ):
        super().__init__(chain, config)
        self.registry = registry
        self.artifacts = artifacts

    def resolve(self, request: InvocationRequest) -> Tuple[ChecksumAddress, ABI, str]:
        """Returns the proxy address, the ABI to use and a display label."""
        if (request.name is None) == (request.proxy_address is None):
            raise ValueError("Exactly one of a logical name or a proxy address is required.")

        if request.name is not None:
            record = self.registry.lookup(request.name)
            address, label = record.proxy_address, request.name
            contract_type = request.contract_type or record.contract_type
        else:
            address = to_checksum_address(request.proxy_address)
            label, contract_type = request.contract_type or address, request.contract_type

        abi = request.abi
        if abi is None:
            if contract_type is None:
                raise ValueError(f"No ABI or contract type available for {label}.")
            abi = self.artifacts.get(contract_type).abi

        if not any(
            e.get("type") == "function" and e.get("name") == request.function_name for e in abi
        ):
            raise ValueError(f"{label} has no function '{request.function_name}'.")
        return address, abi, label

    def submit(self, request: InvocationRequest) -> PendingTransaction:
        """Broadcasts a state-mutating call and returns without waiting for it."""
        address, abi, label = self.resolve(request)
        return self.submit_call(address, abi, request.function_name, request.args, label)

    def call(
        self,
        request: InvocationRequest,
        timeout: Optional[float] = None,
        abandon: Optional[threading.Event] = None,
    ) -> Union[Any, Receipt]:
        """
        Performs a read (returns the decoded value) or, for state-mutating
        requests, submits and waits for confirmation (returns the receipt).
        """
        if request.is_state_mutating:
            handle = self.submit(request)
            receipt = self.await_confirmation(handle, timeout=timeout, abandon=abandon)
            print(
                f"(i) {handle.description} confirmed in block {receipt.block_number} "
                f"({receipt.confirmations} confirmation(s))"
            )
            return receipt

        address, abi, _ = self.resolve(request)
        return self.chain.call(address, abi, request.function_name, request.args)

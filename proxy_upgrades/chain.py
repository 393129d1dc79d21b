import threading
from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional, Sequence

from eth_account.signers.local import LocalAccount
from eth_typing import ABI, ChecksumAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from proxy_upgrades.artifacts import ImplementationArtifact
from proxy_upgrades.config import Config
from proxy_upgrades.errors import ConfigurationError, TransactionRevertedError


class Receipt(NamedTuple):
    """Inclusion result of a mined transaction."""

    tx_hash: str
    block_number: int
    status: int
    contract_address: Optional[ChecksumAddress] = None
    gas_used: int = 0
    confirmations: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """
    The JSON-RPC boundary: submission returns a transaction hash immediately,
    inclusion is observed separately through ``get_transaction_receipt``.
    """

    @property
    @abstractmethod
    def chain_id(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def account_address(self) -> ChecksumAddress:
        """Address of the signer submitting transactions."""
        raise NotImplementedError

    @property
    @abstractmethod
    def block_number(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def deploy(self, artifact: ImplementationArtifact, args: Sequence[Any] = ()) -> str:
        raise NotImplementedError

    @abstractmethod
    def transact(
        self, address: ChecksumAddress, abi: ABI, function_name: str, args: Sequence[Any] = ()
    ) -> str:
        raise NotImplementedError

    @abstractmethod
    def call(
        self, address: ChecksumAddress, abi: ABI, function_name: str, args: Sequence[Any] = ()
    ) -> Any:
        raise NotImplementedError

    @abstractmethod
    def encode_call(self, abi: ABI, function_name: str, args: Sequence[Any] = ()) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raise NotImplementedError

    @abstractmethod
    def get_storage_at(self, address: ChecksumAddress, slot: int) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def get_block_timestamp(self, block_number: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def revert_reason(self, tx_hash: str) -> Optional[str]:
        raise NotImplementedError


class Web3Chain(ChainClient):
    """web3.py chain client signing locally with an eth_account key."""

    def __init__(self, w3: Web3, account: LocalAccount):
        self.w3 = w3
        self.account = account
        self._nonce_lock = threading.Lock()
        self._next_nonce = None

    @classmethod
    def from_config(cls, config: Config) -> "Web3Chain":
        w3 = Web3(Web3.HTTPProvider(config.rpc_url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        if not w3.is_connected():
            raise ConfigurationError(f"Cannot connect to RPC endpoint {config.rpc_url}.")
        client = cls(w3=w3, account=config.signer())
        if config.chain_id is not None and config.chain_id != client.chain_id:
            raise ConfigurationError(
                f"chain_id in config ({config.chain_id}) does not match "
                f"chain_id of current network ({client.chain_id})."
            )
        return client

    @property
    def chain_id(self) -> int:
        return self.w3.eth.chain_id

    @property
    def account_address(self) -> ChecksumAddress:
        return self.account.address

    @property
    def block_number(self) -> int:
        return self.w3.eth.block_number

    def _contract(self, abi: ABI, address: Optional[ChecksumAddress] = None, bytecode=None):
        if address is None:
            return self.w3.eth.contract(abi=abi, bytecode=bytecode)
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _sign_and_send(self, build) -> str:
        """
        Builds, signs and broadcasts under the nonce lock so that concurrent
        submissions from this signer get consecutive nonces.
        """
        with self._nonce_lock:
            pending = self.w3.eth.get_transaction_count(self.account.address, "pending")
            nonce = max(pending, self._next_nonce or 0)
            try:
                tx = build({"from": self.account.address, "nonce": nonce})
            except ContractLogicError as e:
                raise TransactionRevertedError(tx_hash=None, reason=e.message) from e
            signed = self.account.sign_transaction(tx)
            try:
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception:
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1
        return Web3.to_hex(tx_hash)

    def deploy(self, artifact: ImplementationArtifact, args: Sequence[Any] = ()) -> str:
        if not artifact.bytecode or artifact.bytecode == "0x":
            raise ValueError(f"Artifact {artifact.name} has no deployment bytecode.")
        container = self._contract(abi=artifact.abi, bytecode=artifact.bytecode)
        return self._sign_and_send(container.constructor(*args).build_transaction)

    def transact(
        self, address: ChecksumAddress, abi: ABI, function_name: str, args: Sequence[Any] = ()
    ) -> str:
        function = getattr(self._contract(abi, address).functions, function_name)
        return self._sign_and_send(function(*args).build_transaction)

    def call(
        self, address: ChecksumAddress, abi: ABI, function_name: str, args: Sequence[Any] = ()
    ) -> Any:
        function = getattr(self._contract(abi, address).functions, function_name)
        try:
            return function(*args).call({"from": self.account.address})
        except ContractLogicError as e:
            raise TransactionRevertedError(tx_hash=None, reason=e.message) from e

    def encode_call(self, abi: ABI, function_name: str, args: Sequence[Any] = ()) -> bytes:
        encoded = self._contract(abi).encode_abi(function_name, args=list(args))
        return bytes(HexBytes(encoded))

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return Receipt(
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            contract_address=receipt.get("contractAddress"),
            gas_used=receipt["gasUsed"],
        )

    def get_storage_at(self, address: ChecksumAddress, slot: int) -> bytes:
        return bytes(self.w3.eth.get_storage_at(Web3.to_checksum_address(address), slot))

    def get_block_timestamp(self, block_number: int) -> int:
        return self.w3.eth.get_block(block_number)["timestamp"]

    def revert_reason(self, tx_hash: str) -> Optional[str]:
        """Replays a mined transaction as a call to recover its revert reason."""
        tx = self.w3.eth.get_transaction(tx_hash)
        replay = {"from": tx["from"], "data": tx["input"], "value": tx["value"]}
        if tx.get("to"):
            replay["to"] = tx["to"]
        try:
            self.w3.eth.call(replay, block_identifier=max(tx["blockNumber"] - 1, 0))
        except ContractLogicError as e:
            return e.message
        return None

import threading
import time
from typing import Any, NamedTuple, Optional, Sequence

from eth_typing import ABI, ChecksumAddress

from proxy_upgrades.artifacts import ImplementationArtifact, validate_method_args
from proxy_upgrades.chain import ChainClient, Receipt
from proxy_upgrades.confirm import _continue
from proxy_upgrades.config import Config
from proxy_upgrades.errors import ConfirmationTimeoutError, TransactionRevertedError
from proxy_upgrades.utils import short_address


class PendingTransaction(NamedTuple):
    """Handle for a broadcast transaction whose outcome is not yet known."""

    tx_hash: str
    description: str
    submitted_at: float


def await_confirmation(
    chain: ChainClient,
    handle: PendingTransaction,
    min_confirmations: int,
    timeout: float,
    poll_interval: float,
    abandon: Optional[threading.Event] = None,
) -> Receipt:
    """
    Blocks until ``handle`` is mined with at least ``min_confirmations``
    confirmations (the inclusion block counts as the first).

    Raises ``TransactionRevertedError`` for a failed receipt and
    ``ConfirmationTimeoutError`` when the deadline passes or ``abandon`` is
    set first. Neither of those cancels an already broadcast transaction.
    """
    deadline = time.monotonic() + timeout
    while True:
        receipt = chain.get_transaction_receipt(handle.tx_hash)
        if receipt is not None:
            if not receipt.succeeded:
                raise TransactionRevertedError(
                    tx_hash=handle.tx_hash, reason=chain.revert_reason(handle.tx_hash)
                )
            confirmations = chain.block_number - receipt.block_number + 1
            if confirmations >= min_confirmations:
                return receipt._replace(confirmations=confirmations)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ConfirmationTimeoutError(tx_hash=handle.tx_hash, timeout=timeout)
        wait = min(poll_interval, remaining)
        if abandon is None:
            time.sleep(wait)
        elif abandon.wait(wait):
            raise ConfirmationTimeoutError(tx_hash=handle.tx_hash, timeout=timeout)


class Transactor:
    """
    Represents the signing account plus validated/annotated two-phase
    transaction execution: ``submit_*`` returns a handle immediately,
    ``await_confirmation`` is the separate, timeout-bounded wait.
    """

    def __init__(self, chain: ChainClient, config: Config):
        self.chain = chain
        self.config = config
        self._autosign = config.autosign
        if self._autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")

    @property
    def account_address(self) -> ChecksumAddress:
        return self.chain.account_address

    def submit_deployment(
        self, artifact: ImplementationArtifact, args: Sequence[Any] = ()
    ) -> PendingTransaction:
        tx_hash = self.chain.deploy(artifact, args)
        print(f"(i) {artifact.name} deployment submitted in {tx_hash}")
        return PendingTransaction(
            tx_hash=tx_hash, description=f"deploy {artifact.name}", submitted_at=time.time()
        )

    def submit_call(
        self,
        address: ChecksumAddress,
        abi: ABI,
        function_name: str,
        args: Sequence[Any] = (),
        contract_name: str = "",
    ) -> PendingTransaction:
        method_abis = [
            e for e in abi if e.get("type") == "function" and e.get("name") == function_name
        ]
        named_args = validate_method_args(method_abis=method_abis, args=args)
        base_message = (
            f"\nTransacting {contract_name}[{short_address(address)}].{function_name}"
        )
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        tx_hash = self.chain.transact(address, abi, function_name, args)
        return PendingTransaction(
            tx_hash=tx_hash,
            description=f"{contract_name}.{function_name}",
            submitted_at=time.time(),
        )

    def await_confirmation(
        self,
        handle: PendingTransaction,
        timeout: Optional[float] = None,
        abandon: Optional[threading.Event] = None,
    ) -> Receipt:
        return await_confirmation(
            chain=self.chain,
            handle=handle,
            min_confirmations=self.config.min_confirmations,
            timeout=self.config.confirmation_timeout if timeout is None else timeout,
            poll_interval=self.config.poll_interval,
            abandon=abandon,
        )

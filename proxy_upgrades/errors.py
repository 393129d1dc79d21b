"""Exception hierarchy for proxy-upgrades."""


class UpgradesError(Exception):
    """Base exception for deployment, upgrade and invocation errors."""


class ConfigurationError(UpgradesError, ValueError):
    """Raised when required configuration is missing or invalid."""


class NotFoundError(UpgradesError, LookupError):
    """Raised when a logical contract name is not in the registry."""


class UnknownContractError(NotFoundError):
    """Raised when upgrading a logical name that was never deployed."""


class ArtifactNotFoundError(NotFoundError):
    """Raised when no compiled artifact exists for a contract type."""


class DuplicateNameError(UpgradesError, ValueError):
    """Raised when recording a fresh deployment for a name that already has a proxy."""


class UnauthorizedUpgradeError(UpgradesError, PermissionError):
    """Raised when the signer is not the upgrade admin of a proxy."""


class IncompatibleStorageLayoutError(UpgradesError, ValueError):
    """Raised when a new implementation would corrupt the proxy's storage."""


class TransactionRevertedError(UpgradesError):
    """Raised when a transaction is mined with a failed status."""

    def __init__(self, tx_hash: str = None, reason: str = None):
        self.tx_hash = tx_hash
        self.reason = reason
        if tx_hash:
            message = f"Transaction {tx_hash} reverted"
        else:
            message = "Transaction reverted before submission"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConfirmationTimeoutError(UpgradesError, TimeoutError):
    """
    Raised when a transaction is not confirmed before the deadline.
    The transaction remains broadcast; its outcome is unknown.
    """

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(
            f"Transaction {tx_hash} was not confirmed within {timeout} seconds; "
            "re-query chain state before assuming failure."
        )

import os
from pathlib import Path
from typing import Mapping, NamedTuple, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from proxy_upgrades.constants import (
    DEFAULT_ARTIFACTS_DIR,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_MIN_CONFIRMATIONS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REGISTRY_FILEPATH,
)
from proxy_upgrades.errors import ConfigurationError
from proxy_upgrades.utils import _load_yaml

RPC_URL_ENVVARS = ("RPC_URL", "PROVIDER_URL")
PRIVATE_KEY_ENVVAR = "PRIVATE_KEY"

_TRUE_VALUES = ("1", "true", "yes", "y", "on")


class Config(NamedTuple):
    """
    Process-wide settings, constructed once at startup and passed
    explicitly to the registry, deployer and invocation client.
    """

    rpc_url: str
    private_key: str
    chain_id: Optional[int] = None
    min_confirmations: int = DEFAULT_MIN_CONFIRMATIONS
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    registry_filepath: Path = DEFAULT_REGISTRY_FILEPATH
    artifacts_dir: Path = DEFAULT_ARTIFACTS_DIR
    autosign: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Builds a config from environment variables (call ``load_dotenv`` first for .env files)."""
        config = cls._from_environ(os.environ if environ is None else environ)
        config.validate()
        return config

    @classmethod
    def _from_environ(cls, environ: Mapping[str, str]) -> "Config":
        rpc_url = next((environ[k] for k in RPC_URL_ENVVARS if environ.get(k)), None)
        return cls(
            rpc_url=rpc_url,
            private_key=environ.get(PRIVATE_KEY_ENVVAR),
            chain_id=_parse(environ.get("CHAIN_ID"), int, "CHAIN_ID"),
            min_confirmations=_parse(
                environ.get("MIN_CONFIRMATIONS"), int, "MIN_CONFIRMATIONS", DEFAULT_MIN_CONFIRMATIONS
            ),
            confirmation_timeout=_parse(
                environ.get("CONFIRMATION_TIMEOUT"),
                float,
                "CONFIRMATION_TIMEOUT",
                DEFAULT_CONFIRMATION_TIMEOUT,
            ),
            poll_interval=_parse(
                environ.get("POLL_INTERVAL"), float, "POLL_INTERVAL", DEFAULT_POLL_INTERVAL
            ),
            registry_filepath=Path(environ.get("REGISTRY_FILEPATH") or DEFAULT_REGISTRY_FILEPATH),
            artifacts_dir=Path(environ.get("ARTIFACTS_DIR") or DEFAULT_ARTIFACTS_DIR),
            autosign=str(environ.get("AUTOSIGN", "")).lower() in _TRUE_VALUES,
        )

    @classmethod
    def from_yaml(cls, filepath: Path, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Builds a config from a YAML file. Values present in the file override
        the environment; the signer key is only ever read from the environment.
        """
        try:
            data = _load_yaml(filepath) or dict()
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found at {filepath}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Malformed config file {filepath}.")
        if PRIVATE_KEY_ENVVAR.lower() in data or "private_key" in (data.get("network") or dict()):
            raise ConfigurationError("The signer key must not be stored in a config file.")

        base = cls._from_environ(os.environ if environ is None else environ)
        network = data.get("network") or dict()
        confirmations = data.get("confirmations") or dict()
        registry = data.get("registry") or dict()
        artifacts = data.get("artifacts") or dict()
        autosign = base.autosign
        if "autosign" in data:
            autosign = str(data["autosign"]).lower() in _TRUE_VALUES
        config = base._replace(
            rpc_url=network.get("rpc_url") or base.rpc_url,
            chain_id=_parse(network.get("chain_id"), int, "chain_id", base.chain_id),
            min_confirmations=_parse(
                confirmations.get("minimum"), int, "minimum", base.min_confirmations
            ),
            confirmation_timeout=_parse(
                confirmations.get("timeout"), float, "timeout", base.confirmation_timeout
            ),
            poll_interval=_parse(
                confirmations.get("poll_interval"), float, "poll_interval", base.poll_interval
            ),
            registry_filepath=Path(registry.get("filepath", base.registry_filepath)),
            artifacts_dir=Path(artifacts.get("dir", base.artifacts_dir)),
            autosign=autosign,
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not self.rpc_url:
            raise ConfigurationError(
                f"RPC endpoint is not set; export one of {', '.join(RPC_URL_ENVVARS)}."
            )
        if not self.private_key:
            raise ConfigurationError(f"Signer credential is not set; export {PRIVATE_KEY_ENVVAR}.")
        try:
            Account.from_key(self.private_key)
        except Exception as e:
            raise ConfigurationError(f"{PRIVATE_KEY_ENVVAR} is not a valid private key.") from e
        if self.min_confirmations < 1:
            raise ConfigurationError("Minimum confirmations must be at least 1.")
        if self.confirmation_timeout <= 0:
            raise ConfigurationError("Confirmation timeout must be positive.")
        if self.poll_interval <= 0:
            raise ConfigurationError("Poll interval must be positive.")

    def signer(self) -> LocalAccount:
        return Account.from_key(self.private_key)

    def __repr__(self) -> str:
        # never print the key
        return (
            f"Config(rpc_url={self.rpc_url!r}, chain_id={self.chain_id}, "
            f"min_confirmations={self.min_confirmations}, "
            f"confirmation_timeout={self.confirmation_timeout}, "
            f"registry_filepath={str(self.registry_filepath)!r})"
        )


def _parse(value, cast, name: str, default=None):
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} has an invalid value '{value}'.")

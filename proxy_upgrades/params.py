import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, List, NamedTuple, Optional, Tuple

from eth_typing import ChecksumAddress
from web3.auto import w3

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.constants import INITIALIZER_FUNCTION, ZERO_ADDRESS
from proxy_upgrades.errors import NotFoundError
from proxy_upgrades.registry import ContractRegistry
from proxy_upgrades.utils import _load_yaml

CONTRACT_TYPE_KEY = "contract_type"
CONTRACT_INITIALIZER_KEY = "initializer"


class DeploymentRequest(NamedTuple):
    """What to deploy (or upgrade to) under a logical contract name."""

    name: str
    initializer_args: Tuple[Any, ...] = ()
    network: Optional[int] = None
    contract_type: Optional[str] = None

    @property
    def implementation_type(self) -> str:
        """Artifact name of the implementation; defaults to the logical name."""
        return self.contract_type or self.name


class VariableContext:
    def __init__(
        self,
        contract_names: List[str],
        contract_name: str,
        registry: ContractRegistry,
        deployer_address: Optional[ChecksumAddress] = None,
        constants: typing.Dict[str, Any] = None,
    ):
        self.contract_names = contract_names or list()
        self.contract_name = contract_name
        self.registry = registry
        self.deployer_address = deployer_address
        self.constants = constants or dict()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        return isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    def __init__(self, context: VariableContext):
        self.deployer_address = context.deployer_address

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self) -> Any:
        return self.deployer_address or ZERO_ADDRESS


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise DeploymentParameters.Invalid(
                f"Constant '{constant_name}' not found in deployment file."
            )

    @classmethod
    def is_constant(cls, value: str) -> bool:
        return value.isupper()

    def resolve(self) -> Any:
        return self.constant_value


class ContractName(Variable):
    """Proxy address of another logical contract, looked up at resolution time."""

    def __init__(self, contract_name: str, context: VariableContext):
        if contract_name not in context.contract_names and contract_name not in context.registry:
            raise DeploymentParameters.Invalid(f"Contract name {contract_name} not found")
        self.contract_name = contract_name
        self.registry = context.registry

    def resolve(self) -> Any:
        try:
            return self.registry.lookup(self.contract_name).proxy_address
        except NotFoundError:
            # not deployed yet - eager validation
            return ZERO_ADDRESS


def _resolve_param(value: Any) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v) for v in value]

    if isinstance(value, Variable):
        return value.resolve()

    return value  # literally a value


def _resolve_params(parameters: OrderedDict) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value)
    return resolved_parameters


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable.strip(Variable.VARIABLE_PREFIX)
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount(context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ContractName(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: dict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)
    return processed_parameters


def _get_contract_names(config: typing.Dict) -> List[str]:
    contract_names = list()
    for contract_info in config["contracts"]:
        if isinstance(contract_info, str):
            contract_names.append(contract_info)
        elif isinstance(contract_info, dict):
            contract_names.extend(list(contract_info.keys()))
        else:
            raise DeploymentParameters.Invalid("Malformed deployment parameters YAML.")
    return contract_names


def _validate_initializer_abi_inputs(
    contract_name: str, abi_inputs: List[dict], resolved_parameters: OrderedDict
) -> None:
    """Validates resolved initializer parameters against the initializer ABI."""
    if len(resolved_parameters) != len(abi_inputs):
        raise DeploymentParameters.Invalid(
            f"Initializer parameters length mismatch - "
            f"{contract_name} ABI requires {len(abi_inputs)}, Got {len(resolved_parameters)}."
        )

    codex = enumerate(zip(abi_inputs, resolved_parameters.items()), start=0)
    for position, (abi_input, (name, value)) in codex:
        if abi_input["name"] != name:
            raise DeploymentParameters.Invalid(
                f"{contract_name} initializer parameter '{name}' at position {position} does not "
                f"match the expected ABI name '{abi_input['name']}'."
            )
        if not w3.is_encodable(abi_input["type"], value):
            raise DeploymentParameters.Invalid(
                f"Initializer param name '{name}' at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{abi_input['type']}'"
            )


class DeploymentParameters:
    """Logical contracts, their implementation types and initializer parameters."""

    class Invalid(Exception):
        """Raised when the deployment parameters are invalid"""

    class ContractInfo(NamedTuple):
        contract_type: str
        initializer_params: OrderedDict

    def __init__(self, contracts: OrderedDict, chain_id: Optional[int] = None):
        self.contracts = contracts
        self.chain_id = chain_id

    @property
    def contract_names(self) -> List[str]:
        return list(self.contracts)

    @classmethod
    def from_config(
        cls,
        config: typing.Dict,
        registry: ContractRegistry,
        deployer_address: Optional[ChecksumAddress] = None,
    ) -> "DeploymentParameters":
        print("Processing deployment parameters...")
        if not config.get("contracts"):
            raise cls.Invalid("Deployment parameters file missing 'contracts' field.")

        deployment = config.get("deployment") or dict()
        chain_id = deployment.get("chain_id")
        contract_names = _get_contract_names(config)
        constants = config.get("constants")

        contracts = OrderedDict()
        for contract_info in config["contracts"]:
            if isinstance(contract_info, str):
                contracts[contract_info] = cls.ContractInfo(contract_info, OrderedDict())
                continue
            if len(contract_info) != 1:
                raise cls.Invalid("Malformed deployment parameters YAML.")

            contract_name = list(contract_info.keys())[0]  # only one entry
            contract_data = contract_info[contract_name] or dict()
            context = VariableContext(
                contract_names=contract_names,
                contract_name=contract_name,
                registry=registry,
                deployer_address=deployer_address,
                constants=constants,
            )
            initializer_params = _process_raw_values(
                contract_data.get(CONTRACT_INITIALIZER_KEY) or dict(), context
            )
            contract_type = contract_data.get(CONTRACT_TYPE_KEY, contract_name)
            contracts[contract_name] = cls.ContractInfo(contract_type, initializer_params)

        return cls(contracts=contracts, chain_id=int(chain_id) if chain_id else None)

    @classmethod
    def from_yaml(cls, filepath: Path, *args, **kwargs) -> "DeploymentParameters":
        return cls.from_config(_load_yaml(filepath), *args, **kwargs)

    def validate(self, artifacts: ArtifactStore) -> None:
        """Checks every contract's initializer parameters against its artifact's ABI."""
        for contract_name, info in self.contracts.items():
            artifact = artifacts.get(info.contract_type)
            if not info.initializer_params:
                # upgrade targets carry no initializer
                continue
            initializer_abis = artifact.method_abis(INITIALIZER_FUNCTION)
            if not initializer_abis:
                raise self.Invalid(
                    f"{info.contract_type} has no '{INITIALIZER_FUNCTION}' function "
                    f"but initializer parameters were given for {contract_name}."
                )
            resolved = _resolve_params(info.initializer_params)
            abi_inputs = next(
                (abi["inputs"] for abi in initializer_abis if len(abi["inputs"]) == len(resolved)),
                initializer_abis[0]["inputs"],
            )
            _validate_initializer_abi_inputs(
                contract_name=contract_name, abi_inputs=abi_inputs, resolved_parameters=resolved
            )

    def resolve(self, contract_name: str) -> OrderedDict:
        """Resolves the initializer parameters for a single contract."""
        return _resolve_params(self.contracts[contract_name].initializer_params)

    def request(self, contract_name: str) -> DeploymentRequest:
        """Builds a request, resolving variables against the registry as it is now."""
        info = self.contracts[contract_name]
        return DeploymentRequest(
            name=contract_name,
            initializer_args=tuple(self.resolve(contract_name).values()),
            network=self.chain_id,
            contract_type=info.contract_type,
        )

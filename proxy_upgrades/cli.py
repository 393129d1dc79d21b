"""
Command line interface for deploying, upgrading and calling contracts
behind OpenZeppelin transparent proxies.

Create a .env file (or export the variables) before running:
```
RPC_URL=<your_provider_url>
PRIVATE_KEY=<your_private_key>
```

Example usage:
```
proxy-upgrades deploy --name Counter --contract-type CounterV1 --arg 23
proxy-upgrades transact Counter setValue 56
proxy-upgrades deploy --name Counter --contract-type CounterV2
proxy-upgrades call Counter getValue
proxy-upgrades history Counter
```
"""

import functools
from itertools import groupby
from typing import NamedTuple

import click
from dotenv import load_dotenv
from eth_utils import is_hex_address, to_checksum_address

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.chain import Web3Chain
from proxy_upgrades.config import Config
from proxy_upgrades.deployer import UpgradeDeployer
from proxy_upgrades.errors import (
    ConfigurationError,
    ConfirmationTimeoutError,
    UpgradesError,
)
from proxy_upgrades.invocation import InvocationClient, InvocationRequest
from proxy_upgrades.options import (
    autosign_option,
    chain_id_option,
    config_option,
    confirmations_option,
    contract_type_option,
    initializer_args_option,
    name_option,
    params_option,
    timeout_option,
)
from proxy_upgrades.params import DeploymentParameters, DeploymentRequest
from proxy_upgrades.registry import ContractRecord, ContractRegistry, read_registry
from proxy_upgrades.types import ContractArgument


class Context(NamedTuple):
    config: Config
    chain: Web3Chain
    registry: ContractRegistry
    artifacts: ArtifactStore


def setup_context(func):
    """Decorator to connect to the network and open the registry before running a command."""

    @functools.wraps(func)
    @click.pass_context
    def wrapper(ctx, *args, **kwargs):
        config = ctx.obj["config"]
        try:
            chain = Web3Chain.from_config(config)
        except ConfigurationError as e:
            raise click.ClickException(str(e))
        registry = ContractRegistry(filepath=config.registry_filepath, chain_id=chain.chain_id)
        artifacts = ArtifactStore(config.artifacts_dir)
        context = Context(config, chain, registry, artifacts)
        try:
            return func(context, *args, **kwargs)
        except ConfirmationTimeoutError as e:
            click.secho(f"{e}", fg="yellow", err=True)
            ctx.exit(2)
        except UpgradesError as e:
            raise click.ClickException(str(e))

    return wrapper


def _target(target: str) -> dict:
    if is_hex_address(target):
        return {"proxy_address": to_checksum_address(target)}
    return {"name": target}


def _echo_record(record: ContractRecord) -> None:
    click.secho(f"{record.name} (chain {record.chain_id})", fg="green")
    click.echo(f"    proxy:          {record.proxy_address}")
    click.echo(f"    implementation: {record.implementation} ({record.contract_type or 'unknown'})")
    click.echo(f"    upgrades:       {len(record.history) - 1}")


@click.group()
@config_option
@autosign_option
@click.pass_context
def cli(ctx, config_filepath, autosign):
    """Deploy, upgrade and call contracts behind upgradeable proxies."""
    load_dotenv(override=True)
    try:
        config = Config.from_yaml(config_filepath) if config_filepath else Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    if autosign:
        config = config._replace(autosign=True)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@params_option
@name_option
@contract_type_option
@initializer_args_option
@confirmations_option
@setup_context
def deploy(context, params_filepath, name, contract_type, initializer_args, confirmations):
    """Deploy a contract behind a new proxy, or upgrade its existing proxy."""
    if bool(params_filepath) == bool(name):
        raise click.UsageError("Pass either --params or --name.")
    config = context.config
    if confirmations:
        config = config._replace(min_confirmations=confirmations)
    deployer = UpgradeDeployer(context.chain, context.registry, context.artifacts, config)

    try:
        if params_filepath:
            parameters = DeploymentParameters.from_yaml(
                params_filepath, registry=context.registry, deployer_address=deployer.account_address
            )
            records = deployer.deploy_from_parameters(parameters)
        else:
            request = DeploymentRequest(
                name=name,
                initializer_args=tuple(initializer_args),
                network=context.chain.chain_id,
                contract_type=contract_type,
            )
            records = [deployer.deploy_or_upgrade(request)]
    except (DeploymentParameters.Invalid, ValueError) as e:
        raise click.ClickException(str(e))

    for record in records:
        _echo_record(record)
    click.echo(f"(i) Registry written to {context.registry.filepath}!")


@cli.command()
@click.argument("target")
@click.argument("function_name")
@click.argument("args", nargs=-1, type=ContractArgument())
@contract_type_option
@setup_context
def call(context, target, function_name, args, contract_type):
    """Read FUNCTION_NAME from TARGET (a logical name or a proxy address)."""
    client = InvocationClient(context.chain, context.registry, context.artifacts, context.config)
    request = InvocationRequest(
        function_name=function_name,
        args=tuple(args),
        is_state_mutating=False,
        **_target(target),
        contract_type=contract_type,
    )
    try:
        value = client.call(request)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(value)


@cli.command()
@click.argument("target")
@click.argument("function_name")
@click.argument("args", nargs=-1, type=ContractArgument())
@contract_type_option
@confirmations_option
@timeout_option
@setup_context
def transact(context, target, function_name, args, contract_type, confirmations, timeout):
    """Send a FUNCTION_NAME transaction to TARGET (a logical name or a proxy address)."""
    config = context.config
    if confirmations:
        config = config._replace(min_confirmations=confirmations)
    client = InvocationClient(context.chain, context.registry, context.artifacts, config)
    request = InvocationRequest(
        function_name=function_name,
        args=tuple(args),
        is_state_mutating=True,
        **_target(target),
        contract_type=contract_type,
    )
    try:
        receipt = client.call(request, timeout=timeout)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Transaction hash: {receipt.tx_hash}")
    click.echo(f"Block: {receipt.block_number} (status {receipt.status})")


@cli.command()
@click.argument("name")
@chain_id_option
@click.pass_context
def history(ctx, name, chain_id):
    """Show every implementation NAME has been upgraded to."""
    config = ctx.obj["config"]
    registry_filepath = config.registry_filepath
    if not registry_filepath.exists():
        raise click.ClickException(f"No registry found at {registry_filepath}")
    chain_id = chain_id if chain_id is not None else config.chain_id
    records = [
        r for r in read_registry(registry_filepath) if r.name == name and chain_id in (None, r.chain_id)
    ]
    if not records:
        raise click.ClickException(f"No contract named {name} in the registry.")
    if len(records) > 1:
        chains = ", ".join(str(r.chain_id) for r in records)
        raise click.ClickException(f"{name} is deployed on chains {chains}; pass --chain-id.")
    (record,) = records
    _echo_record(record)
    for index, entry in enumerate(record.history):
        click.secho(
            f"    {index}. {entry.address} {entry.contract_type or 'unknown'} "
            f"block={entry.block_number} deployed_at={entry.deployed_at}",
            fg="cyan",
        )


@cli.command()
@click.argument("name")
@setup_context
def reconcile(context, name):
    """Re-read NAME's implementation from the proxy and update the registry."""
    deployer = UpgradeDeployer(context.chain, context.registry, context.artifacts, context.config)
    _echo_record(deployer.reconcile(name))


@cli.command(name="list-contracts")
@chain_id_option
@click.pass_context
def list_contracts(ctx, chain_id):
    """List all contracts in the registry. Optionally filter by chain id."""
    registry_filepath = ctx.obj["config"].registry_filepath
    if not registry_filepath.exists():
        raise click.ClickException(f"No registry found at {registry_filepath}")
    records = [r for r in read_registry(registry_filepath) if chain_id in (None, r.chain_id)]
    for record_chain_id, chain_records in groupby(records, key=lambda r: r.chain_id):
        click.secho(f"\nChain {record_chain_id}", fg="yellow")
        for index, record in enumerate(chain_records, start=1):
            click.secho(
                f"    {index}. {record.name} {record.proxy_address} -> {record.implementation}",
                fg="cyan",
            )


if __name__ == "__main__":
    cli()

#!/usr/bin/python3

import click
from dotenv import load_dotenv

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.chain import Web3Chain
from proxy_upgrades.config import Config
from proxy_upgrades.constants import NETWORKS_DIR
from proxy_upgrades.invocation import InvocationClient, InvocationRequest
from proxy_upgrades.registry import ContractRegistry

NETWORK_CONFIG_FILEPATH = NETWORKS_DIR / "bsc-testnet.yml"


@click.command()
@click.option("--name", default="Counter", help="Logical contract name.")
@click.option("--value", default=56, type=int, help="Value to set.")
@click.option("--increase", default=None, type=int, help="Amount to increase by (CounterV2).")
def main(name, value, increase):
    """Reads the Counter value, sets it, optionally increases it, and reads it again."""
    load_dotenv(override=True)
    config = Config.from_yaml(NETWORK_CONFIG_FILEPATH)
    chain = Web3Chain.from_config(config)
    registry = ContractRegistry(filepath=config.registry_filepath, chain_id=chain.chain_id)
    client = InvocationClient(chain, registry, ArtifactStore(config.artifacts_dir), config)

    get_value = InvocationRequest(name=name, function_name="getValue")
    click.echo(client.call(get_value))

    client.call(
        InvocationRequest(
            name=name, function_name="setValue", args=(value,), is_state_mutating=True
        )
    )
    if increase is not None:
        client.call(
            InvocationRequest(
                name=name, function_name="increaseValue", args=(increase,), is_state_mutating=True
            )
        )
    click.echo(client.call(get_value))


if __name__ == "__main__":
    main()

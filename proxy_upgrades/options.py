from pathlib import Path

import click

from proxy_upgrades.types import ContractArgument, MinInt

config_option = click.option(
    "--config",
    "-c",
    "config_filepath",
    help="YAML config file; defaults to environment variables (and .env).",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)

autosign_option = click.option(
    "--autosign",
    help="Sign and send without asking for confirmation.",
    is_flag=True,
    default=False,
)

params_option = click.option(
    "--params",
    "-p",
    "params_filepath",
    help="YAML deployment parameters file.",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)

name_option = click.option(
    "--name",
    "-n",
    help="Logical contract name",
    type=str,
    default=None,
)

contract_type_option = click.option(
    "--contract-type",
    "-t",
    help="Implementation artifact name (defaults to the logical name).",
    type=str,
    default=None,
)

initializer_args_option = click.option(
    "--arg",
    "-a",
    "initializer_args",
    help="Initializer argument; repeat for each argument, in order.",
    multiple=True,
    type=ContractArgument(),
)

confirmations_option = click.option(
    "--confirmations",
    help="Minimum block confirmations (overrides config).",
    type=MinInt(1),
    default=None,
)

timeout_option = click.option(
    "--timeout",
    help="Seconds to wait for confirmation (overrides config).",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
)

chain_id_option = click.option(
    "--chain-id",
    help="Only show contracts on this chain.",
    type=int,
    default=None,
)

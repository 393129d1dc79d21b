#!/usr/bin/python3

from dotenv import load_dotenv

from proxy_upgrades.artifacts import ArtifactStore
from proxy_upgrades.chain import Web3Chain
from proxy_upgrades.config import Config
from proxy_upgrades.constants import DEPLOYMENT_PARAMS_DIR, NETWORKS_DIR
from proxy_upgrades.deployer import UpgradeDeployer
from proxy_upgrades.params import DeploymentParameters
from proxy_upgrades.registry import ContractRegistry

NETWORK_CONFIG_FILEPATH = NETWORKS_DIR / "bsc-testnet.yml"
DEPLOYMENT_PARAMS_FILEPATH = DEPLOYMENT_PARAMS_DIR / "counter" / "upgrade-v2.yml"


def main():
    """
    This script upgrades the 'Counter' proxy to CounterV2.
    The proxy address comes from the registry written by deploy_counter.py.

    python scripts/upgrade_counter.py
    """
    load_dotenv(override=True)
    config = Config.from_yaml(NETWORK_CONFIG_FILEPATH)
    chain = Web3Chain.from_config(config)
    registry = ContractRegistry(filepath=config.registry_filepath, chain_id=chain.chain_id)
    deployer = UpgradeDeployer(chain, registry, ArtifactStore(config.artifacts_dir), config)

    parameters = DeploymentParameters.from_yaml(
        DEPLOYMENT_PARAMS_FILEPATH, registry=registry, deployer_address=deployer.account_address
    )
    for record in deployer.deploy_from_parameters(parameters):
        print(f"{record.name} proxy: {record.proxy_address} -> {record.implementation}")


if __name__ == "__main__":
    main()

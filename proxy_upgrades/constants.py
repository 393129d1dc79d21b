from pathlib import Path

import proxy_upgrades

#
# Filesystem
#

PACKAGE_DIR = Path(proxy_upgrades.__file__).parent
DEPLOYMENT_PARAMS_DIR = PACKAGE_DIR / "deployment_params"
NETWORKS_DIR = PACKAGE_DIR / "networks"

DEFAULT_REGISTRY_FILEPATH = Path("deployments") / "registry.json"
DEFAULT_ARTIFACTS_DIR = Path("artifacts")

#
# Confirmations
#

DEFAULT_MIN_CONFIRMATIONS = 1
DEFAULT_CONFIRMATION_TIMEOUT = 120  # seconds
DEFAULT_POLL_INTERVAL = 1  # seconds

#
# Proxies
#

PROXY_CONTRACT_TYPE = "TransparentUpgradeableProxy"
PROXY_ADMIN_CONTRACT_TYPE = "ProxyAdmin"
INITIALIZER_FUNCTION = "initialize"

# EIP1967 Admin slot - https://eips.ethereum.org/EIPS/eip-1967#admin-address
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

# EIP1967 Implementation slot - https://eips.ethereum.org/EIPS/eip-1967#logic-contract-address
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

# OpenZeppelin 5.x ProxyAdmin, the subset used for upgrades
PROXY_ADMIN_ABI = [
    {
        "type": "function",
        "name": "owner",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address", "internalType": "address"}],
    },
    {
        "type": "function",
        "name": "upgradeAndCall",
        "stateMutability": "payable",
        "inputs": [
            {"name": "proxy", "type": "address", "internalType": "contract ITransparentUpgradeableProxy"},
            {"name": "implementation", "type": "address", "internalType": "address"},
            {"name": "data", "type": "bytes", "internalType": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "UPGRADE_INTERFACE_VERSION",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string", "internalType": "string"}],
    },
]

# Revert selector name raised by OpenZeppelin's Ownable for a non-owner caller
OWNABLE_UNAUTHORIZED_ACCOUNT = "OwnableUnauthorizedAccount"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

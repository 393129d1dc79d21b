import click
from eth_utils import is_hex, is_hex_address, to_checksum_address
from hexbytes import HexBytes


class MinInt(click.ParamType):
    name = "minint"

    def __init__(self, min_value):
        self.min_value = min_value

    def convert(self, value, param, ctx):
        try:
            ivalue = int(value)
        except ValueError:
            self.fail(f"{value} is not a valid integer", param, ctx)
        if ivalue < self.min_value:
            self.fail(
                f"{value} is less than the minimum allowed value of {self.min_value}", param, ctx
            )
        return ivalue


class ContractArgument(click.ParamType):
    """
    Best-effort conversion of a command line value into an ABI value:
    integers, booleans, addresses and 0x-prefixed bytes; anything else
    stays a string. ABI type checking happens against the function ABI.
    """

    name = "contract_argument"

    def convert(self, value, param, ctx):
        if not isinstance(value, str):
            return value
        lowered = value.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        if is_hex_address(value):
            return to_checksum_address(value)
        if value.startswith("0x") and is_hex(value):
            return bytes(HexBytes(value))
        try:
            return int(value)
        except ValueError:
            return value

"""Contract ABI loading.

ABI files live in the ``abi/`` folder next to this module, in the same
``{"abi": [...]}`` shape Foundry writes out.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Type

from eth_typing import HexAddress, HexStr
from web3 import Web3
from web3.contract import Contract

#: Folder holding the packaged ABI files
ABI_FOLDER = Path(__file__).parent / "abi"


@lru_cache(maxsize=None)
def get_abi_by_filename(fname: str) -> dict:
    """Read a packaged ABI file.

    :param fname:
        File name relative to :py:data:`ABI_FOLDER`, e.g. ``"ERC20.json"``.

    :return:
        The parsed JSON with the ``abi`` key.
    """
    path = ABI_FOLDER / fname
    with open(path, "rt") as inp:
        return json.load(inp)


def get_contract(web3: Web3, fname: str) -> Type[Contract]:
    """Get a contract class for an ABI file.

    The class is not bound to an address. Use it to encode calldata or
    pass ``address=`` to get a deployed instance.
    """
    abi = get_abi_by_filename(fname)["abi"]
    return web3.eth.contract(abi=abi)


def get_deployed_contract(web3: Web3, fname: str, address: HexAddress | str) -> Contract:
    """Get a contract instance at an address."""
    abi = get_abi_by_filename(fname)["abi"]
    return web3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


def encode_function_data(contract: Type[Contract] | Contract, fn_name: str, args: list | tuple) -> HexStr:
    """Encode calldata for a contract function.

    :param contract:
        Contract class or instance from :py:func:`get_contract`.

    :param fn_name:
        Function name in the ABI, e.g. ``"transferDST20"``.

    :param args:
        Positional function arguments.
    """
    return HexStr(contract.encode_abi(fn_name, args=list(args)))

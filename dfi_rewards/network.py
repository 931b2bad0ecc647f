"""DeFiChain network parameters.

Each network bundles everything the codec and the workflow need to talk to
both execution domains:

- the Ocean REST API used for the native (DVM) domain,
- the MetaChain (DMC) JSON-RPC endpoint and EVM chain id,
- address encoding parameters for native addresses,
- the DUSD token id, which differs between mainnet and testnet.

Example::

    from dfi_rewards.network import get_network

    network = get_network("testnet")
    print(network.ocean_url, network.evm_chain_id)
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DefiChainNetwork:
    """Static parameters of a DeFiChain network."""

    #: Network name as used in Ocean API paths (``mainnet``, ``testnet``)
    name: str

    #: Ocean REST API base URL
    ocean_url: str

    #: MetaChain JSON-RPC URL
    evm_rpc_url: str

    #: EVM chain id of the MetaChain
    evm_chain_id: int

    #: Human readable part of bech32 native addresses
    bech32_hrp: str

    #: Base58check version byte of P2PKH addresses
    pubkey_hash_prefix: int

    #: Base58check version byte of P2SH addresses
    script_hash_prefix: int

    #: DUSD token id on the native chain
    dusd_token_id: int

    #: Pool pair symbol used for the DUSD/DFI price ratio
    dusd_dfi_pool: str = "DUSD-DFI"


MAINNET = DefiChainNetwork(
    name="mainnet",
    ocean_url="https://ocean.mydefichain.com",
    evm_rpc_url="https://dmc.mydefichain.com/mainnet",
    evm_chain_id=1130,
    bech32_hrp="df",
    pubkey_hash_prefix=0x12,
    script_hash_prefix=0x5A,
    dusd_token_id=15,
)

TESTNET = DefiChainNetwork(
    name="testnet",
    ocean_url="https://testnet-ocean.mydefichain.com:8443",
    evm_rpc_url="https://dmc.mydefichain.com/testnet",
    evm_chain_id=1131,
    bech32_hrp="tf",
    pubkey_hash_prefix=0x0F,
    script_hash_prefix=0x80,
    dusd_token_id=11,
)

#: Known networks by name
NETWORKS: dict[str, DefiChainNetwork] = {
    MAINNET.name: MAINNET,
    TESTNET.name: TESTNET,
}


def get_network(name: str) -> DefiChainNetwork:
    """Look up network parameters by name.

    :param name:
        ``mainnet`` or ``testnet``, case insensitive.

    :raise ValueError:
        Unknown network name.
    """
    try:
        return NETWORKS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown DeFiChain network {name!r}, expected one of {', '.join(NETWORKS)}") from None

"""Transfer domain module.

Moves value between the native DeFiChain ledger and its EVM side.

Codec:

- :func:`token_to_contract_address`: DST20 contract address of a native token
- :func:`address_for_domain`: native or EVM address to its output script

Encoder:

- :class:`TransferRequest`: one logical transfer
- :func:`build_transfer`: request to signed custom transaction message
- :class:`TransferDomainDescriptor`: the signed TransferDomain item pair
- :func:`decode_evm_payload`: inspect the embedded EVM sub-transaction
"""

from dfi_rewards.transfer_domain.codec import (
    DomainAddress,
    InvalidTokenId,
    TransferDomainError,
    TransferDomainType,
    UnsupportedAddressFormat,
    address_for_domain,
    token_to_contract_address,
)
from dfi_rewards.transfer_domain.encoder import (
    TRANSFER_DOMAIN_CONTRACT,
    ConvertDirection,
    Domain,
    EvmCall,
    InvalidAmount,
    NativeConversionDescriptor,
    TransferDomainDescriptor,
    TransferDomainLeg,
    TransferRequest,
    UnsupportedDirection,
    build_transfer,
    decode_evm_payload,
    rescale_to_evm,
)

__all__ = [
    "DomainAddress",
    "InvalidTokenId",
    "TransferDomainError",
    "TransferDomainType",
    "UnsupportedAddressFormat",
    "address_for_domain",
    "token_to_contract_address",
    "TRANSFER_DOMAIN_CONTRACT",
    "ConvertDirection",
    "Domain",
    "EvmCall",
    "InvalidAmount",
    "NativeConversionDescriptor",
    "TransferDomainDescriptor",
    "TransferDomainLeg",
    "TransferRequest",
    "UnsupportedDirection",
    "build_transfer",
    "decode_evm_payload",
    "rescale_to_evm",
]

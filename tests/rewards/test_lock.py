"""Lock contract call preparation and signing."""

import pytest
import rlp
from eth_account import Account
from web3 import Web3

from dfi_rewards.abi import encode_function_data
from dfi_rewards.lifecycle.transaction import TransactionDomain
from dfi_rewards.rewards.lock import (
    get_dst20_token,
    get_lock_contract,
    prepare_add_rewards,
    prepare_approve,
    prepare_distribute_rewards,
    sign_evm_call,
)
from dfi_rewards.transfer_domain.codec import token_to_contract_address

LOCK_ADDRESS = "0x" + "12" * 20

#: EIP-1559 transactions are prefixed with their type byte
DYNAMIC_FEE_TX_TYPE = 0x02


@pytest.fixture()
def web3() -> Web3:
    """Offline web3, only used for ABI encoding."""
    return Web3()


@pytest.fixture()
def lock(web3):
    return get_lock_contract(web3, LOCK_ADDRESS)


def test_sign_add_rewards(account, lock):
    amount = 125 * 10**18
    tx = sign_evm_call(account, prepare_add_rewards(lock, amount), nonce=3, chain_id=1131, max_fee_per_gas=10**10)

    assert tx.domain == TransactionDomain.evm
    assert tx.raw[0] == DYNAMIC_FEE_TX_TYPE
    assert Account.recover_transaction(tx.raw) == account.address

    fields = rlp.decode(tx.raw[1:])
    chain_id, nonce = (int.from_bytes(f, "big") for f in fields[:2])
    assert chain_id == 1131
    assert nonce == 3
    assert Web3.to_checksum_address(fields[5]) == lock.address

    calldata = encode_function_data(lock, "addRewards", [amount])
    assert bytes.fromhex(calldata[2:]) in tx.raw


def test_sign_is_deterministic(account, lock):
    fn = prepare_distribute_rewards(lock, 500)
    first = sign_evm_call(account, fn, nonce=0, chain_id=1131, max_fee_per_gas=1)
    second = sign_evm_call(account, fn, nonce=0, chain_id=1131, max_fee_per_gas=1)
    assert first.txid == second.txid
    assert first.txid.startswith("0x")


def test_approve_targets_token(account, web3, lock):
    dusd = get_dst20_token(web3, token_to_contract_address(11))
    tx = sign_evm_call(account, prepare_approve(dusd, lock.address, 10**18), nonce=1, chain_id=1131, max_fee_per_gas=1)

    fields = rlp.decode(tx.raw[1:])
    assert Web3.to_checksum_address(fields[5]) == dusd.address
    fn, args = dusd.decode_function_input(fields[7])
    assert fn.fn_name == "approve"
    assert list(args.values()) == [lock.address, 10**18]


def test_prepare_guards(web3, lock):
    dusd = get_dst20_token(web3, token_to_contract_address(11))
    with pytest.raises(AssertionError):
        prepare_approve(dusd, lock.address, -1)
    with pytest.raises(AssertionError):
        prepare_add_rewards(lock, 0)
    with pytest.raises(AssertionError):
        prepare_distribute_rewards(lock, 0)

"""DeFiChain DUSD lock reward automation.

Swap DFI to DUSD on the native DEX, move the DUSD to the EVM side with a
transfer-domain transaction and hand it to the DUSD lock reward contract.

- :py:mod:`dfi_rewards.transfer_domain` encodes cross-domain transfers
- :py:mod:`dfi_rewards.lifecycle` broadcasts and confirms transactions
- :py:mod:`dfi_rewards.rewards` sequences the treasury workflow
"""

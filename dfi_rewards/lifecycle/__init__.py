"""Transaction lifecycle.

Broadcast signed native or EVM transactions with bounded retries and wait
for their inclusion in a block. See
:py:class:`dfi_rewards.lifecycle.orchestrator.TransactionLifecycle`.
"""

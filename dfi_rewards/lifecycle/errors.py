"""Errors reported by transaction submission endpoints."""


class EndpointError(Exception):
    """Endpoint rejected a request.

    Carries the numeric error code the endpoint reported, so retry logs
    can tell a mempool conflict from a decode failure.
    """

    def __init__(self, code: int, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class EvmTransactionReverted(Exception):
    """An included EVM transaction has status 0."""

    def __init__(self, txid: str, receipt: dict):
        super().__init__(f"EVM transaction {txid} reverted in block {receipt.get('blockNumber')}")
        self.txid = txid
        self.receipt = receipt

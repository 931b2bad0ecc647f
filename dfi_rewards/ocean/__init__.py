"""Ocean REST API client for the native DeFiChain ledger."""

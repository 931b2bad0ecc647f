"""Typed wrappers around the Ocean REST API.

Only the handful of endpoints the rewards workflow and the transaction
lifecycle need. All amounts are returned as :py:class:`decimal.Decimal`
exactly as Ocean prints them, never as floats.

Ocean answers ``{"data": ...}`` on success and
``{"error": {"code": ..., "type": ..., "message": ...}}`` on failure.
Failures raise :py:class:`OceanApiError`.

Example::

    from dfi_rewards.ocean.session import create_ocean_session
    from dfi_rewards.ocean.api import fetch_block_count, fetch_address_tokens

    session = create_ocean_session()
    print(fetch_block_count(session))
    for token in fetch_address_tokens(session, "df1q..."):
        print(token.symbol, token.amount)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from requests import Response

from dfi_rewards.lifecycle.errors import EndpointError
from dfi_rewards.ocean.session import OceanSession

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404

#: Default page size for paginated list endpoints, Ocean's maximum
DEFAULT_PAGE_SIZE = 200

#: HTTP timeout for a single Ocean call, seconds
DEFAULT_TIMEOUT = 30.0


class OceanApiError(EndpointError):
    """Ocean returned an error envelope or a non-JSON error response."""

    def __init__(self, code: int, error_type: str, message: str, url: str | None = None):
        super().__init__(code, message)
        self.error_type = error_type
        self.url = url

    @property
    def not_found(self) -> bool:
        return self.code == HTTP_NOT_FOUND


@dataclass(slots=True)
class AddressToken:
    """Token balance of a native address."""

    #: Native token id
    id: int

    #: Token symbol, e.g. ``DFI`` or ``DUSD``
    symbol: str

    #: Balance in whole token units
    amount: Decimal

    #: Symbol as shown in wallets, e.g. ``dBTC``
    display_symbol: str | None = None


@dataclass(slots=True)
class UnspentOutput:
    """A spendable UTXO of a native address."""

    txid: str
    vout: int
    value: Decimal
    token_id: int
    script_hex: str


@dataclass(slots=True)
class PoolPair:
    """Pool pair state relevant for pricing."""

    id: int
    symbol: str

    #: Token A per token B
    price_ratio_ab: Decimal

    #: Token B per token A
    price_ratio_ba: Decimal


@dataclass(slots=True)
class OceanTransaction:
    """An indexed native transaction."""

    txid: str
    block_height: int
    block_hash: str


def _parse_response(response: Response) -> Any:
    """Unwrap the Ocean envelope or raise :py:class:`OceanApiError`."""
    try:
        payload = response.json()
    except ValueError:
        response_text = response.text[:200]
        raise OceanApiError(response.status_code, "InvalidResponse", f"Not JSON: {response_text}", response.url) from None

    error = payload.get("error") if isinstance(payload, dict) else None
    if error or not response.ok:
        error = error or {}
        raise OceanApiError(
            int(error.get("code", response.status_code)),
            error.get("type", "HttpError"),
            error.get("message", response.reason or "Unknown error"),
            response.url,
        )

    if not isinstance(payload, dict) or "data" not in payload:
        raise OceanApiError(response.status_code, "InvalidResponse", f"No data in response: {str(payload)[:200]}", response.url)

    return payload


def _get(session: OceanSession, path: str, params: dict | None = None) -> dict:
    url = session.endpoint_url(path)
    logger.debug("GET %s %s", url, params or "")
    response = session.get(url, params=params, timeout=DEFAULT_TIMEOUT)
    return _parse_response(response)


def _paginate(session: OceanSession, path: str, page_size: int = DEFAULT_PAGE_SIZE) -> Iterable[dict]:
    """Iterate over all items of a paginated list endpoint."""
    params = {"size": page_size}
    while True:
        payload = _get(session, path, params)
        yield from payload["data"]
        next_token = (payload.get("page") or {}).get("next")
        if not next_token:
            return
        params = {"size": page_size, "next": next_token}


def fetch_block_count(session: OceanSession) -> int:
    """Current native chain height."""
    payload = _get(session, "stats")
    return int(payload["data"]["count"]["blocks"])


def fetch_address_tokens(session: OceanSession, address: str) -> list[AddressToken]:
    """All account token balances of a native address."""
    return [
        AddressToken(
            id=int(item["id"]),
            symbol=item["symbol"],
            amount=Decimal(item["amount"]),
            display_symbol=item.get("displaySymbol"),
        )
        for item in _paginate(session, f"address/{address}/tokens")
    ]


def fetch_address_token_balance(session: OceanSession, address: str, token_id: int) -> Decimal:
    """Account balance of one token, zero if the address does not hold it."""
    for token in fetch_address_tokens(session, address):
        if token.id == token_id:
            return token.amount
    return Decimal(0)


def fetch_address_unspent(session: OceanSession, address: str) -> list[UnspentOutput]:
    """All UTXOs of a native address."""
    result = []
    for item in _paginate(session, f"address/{address}/transactions/unspent"):
        vout = item["vout"]
        result.append(
            UnspentOutput(
                txid=vout["txid"],
                vout=int(vout["n"]),
                value=Decimal(vout["value"]),
                token_id=int(vout.get("tokenId") or 0),
                script_hex=item["script"]["hex"],
            )
        )
    return result


def fetch_pool_pair(session: OceanSession, pool: str | int) -> PoolPair:
    """Pool pair by id or by symbol, e.g. ``DUSD-DFI``."""
    data = _get(session, f"poolpairs/{pool}")["data"]
    price_ratio = data["priceRatio"]
    return PoolPair(
        id=int(data["id"]),
        symbol=data["symbol"],
        price_ratio_ab=Decimal(price_ratio["ab"]),
        price_ratio_ba=Decimal(price_ratio["ba"]),
    )


def fetch_fee_estimate(session: OceanSession, confirmation_target: int = 10) -> Decimal:
    """Node fee rate estimate.

    :param confirmation_target:
        Blocks within which the transaction should confirm.
    :return:
        Fee rate in DFI/kB.
    """
    data = _get(session, "fee/estimate", {"confirmationTarget": confirmation_target})["data"]
    return Decimal(str(data))


def fetch_transaction(session: OceanSession, txid: str) -> OceanTransaction | None:
    """Look up an indexed transaction.

    :return:
        ``None`` if Ocean has not indexed the transaction yet.
    """
    try:
        data = _get(session, f"transactions/{txid}")["data"]
    except OceanApiError as e:
        if e.not_found:
            return None
        raise

    if not isinstance(data, dict):
        raise OceanApiError(200, "InvalidResponse", f"Transaction {txid} is not an object: {data!r}")

    block = data.get("block") or {}
    return OceanTransaction(
        txid=data.get("txid", txid),
        block_height=int(block.get("height", -1)),
        block_hash=block.get("hash", ""),
    )


def send_raw_transaction(session: OceanSession, raw_hex: str, max_fee_rate: Decimal | None = None) -> str:
    """Relay a signed native transaction.

    :param raw_hex:
        Signed transaction, hex without ``0x``.
    :param max_fee_rate:
        Reject the transaction if its fee rate exceeds this, DFI/kB.
    :return:
        Transaction id reported by Ocean.
    :raise OceanApiError:
        Ocean or the node behind it rejected the transaction.
    """
    body: dict[str, Any] = {"hex": raw_hex}
    if max_fee_rate is not None:
        body["maxFeeRate"] = float(max_fee_rate)

    url = session.endpoint_url("rawtx/send")
    logger.debug("POST %s, %d bytes", url, len(raw_hex) // 2)
    response = session.post(url, json=body, timeout=DEFAULT_TIMEOUT)
    return _parse_response(response)["data"]

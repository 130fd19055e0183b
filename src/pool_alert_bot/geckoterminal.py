from __future__ import annotations

import asyncio
import logging
from typing import Any

from .feed_client import FeedError, RateLimitedFeedClient
from .formatting import resolve_market_cap
from .types import MarketSnapshot, TopPool, TradeEvent

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/json;version=20230302"


def api_headers(api_key: str | None = None) -> dict[str, str]:
    headers = {"Accept": ACCEPT_HEADER}
    if api_key:
        headers["x-cg-pro-api-key"] = api_key
    return headers


class GeckoTerminalApi:
    def __init__(
        self,
        client: RateLimitedFeedClient,
        api_base: str,
        network: str,
        trades_ttl: float = 1.0,
        metadata_ttl: float = 60.0,
    ) -> None:
        self.client = client
        self.api_base = api_base.rstrip("/")
        self.network = network
        self.trades_ttl = trades_ttl
        self.metadata_ttl = metadata_ttl

    def _url(self, path: str) -> str:
        return f"{self.api_base}/networks/{self.network}{path}"

    def token_url(self, token_address: str) -> str:
        return self._url(f"/tokens/{token_address.lower()}")

    def trades_url(self, pool_id: str, limit: int) -> str:
        return self._url(f"/pools/{pool_id}/trades?limit={limit}")

    def pool_url(self, pool_id: str) -> str:
        return self._url(f"/pools/{pool_id}")

    async def fetch_top_pool(self, token_address: str) -> TopPool | None:
        data = await self.client.fetch(self.token_url(token_address), self.metadata_ttl)
        node = _data_node(data)
        relationships = node.get("relationships")
        top_pools = relationships.get("top_pools") if isinstance(relationships, dict) else None
        pools = top_pools.get("data") if isinstance(top_pools, dict) else None
        if not isinstance(pools, list) or not pools or not isinstance(pools[0], dict):
            return None
        raw_id = str(pools[0].get("id") or "").strip()
        if not raw_id:
            return None
        # Relationship ids are "<network>_<address>".
        pool_id = raw_id.split("_")[-1]
        symbol = _attributes(node).get("symbol") or "TOKEN"
        return TopPool(pool_id=pool_id, symbol=str(symbol))

    async def fetch_trades(self, pool_id: str, limit: int = 5) -> list[TradeEvent]:
        data = await self.client.fetch(self.trades_url(pool_id, limit), self.trades_ttl)
        items = data.get("data") if isinstance(data, dict) else None
        return normalize_trades(items)

    async def fetch_snapshot(self, pool_id: str, trade: TradeEvent) -> MarketSnapshot:
        token_attrs: dict[str, Any] = {}
        holders: int | None = None

        if trade.token_address:
            token_data, pool_data, holders = await asyncio.gather(
                self.client.fetch(self.token_url(trade.token_address), self.metadata_ttl),
                self.client.fetch(self.pool_url(pool_id), self.metadata_ttl),
                self._fetch_holders(trade.token_address),
            )
            token_attrs = _attributes(_data_node(token_data))
        else:
            pool_data = await self.client.fetch(self.pool_url(pool_id), self.metadata_ttl)
        pool_attrs = _attributes(_data_node(pool_data))

        price = trade.price_usd or _float_or_none(token_attrs.get("price_usd")) or 0.0
        return MarketSnapshot(
            market_cap=resolve_market_cap(token_attrs, price),
            liquidity_usd=_positive_or_none(pool_attrs.get("reserve_in_usd")),
            volume_24h_usd=_positive_or_none(_volume_24h(pool_attrs)),
            price_change_24h_pct=_price_change_24h(token_attrs, pool_attrs),
            holders=holders,
        )

    async def _fetch_holders(self, token_address: str) -> int | None:
        try:
            data = await self.client.fetch(
                f"{self.token_url(token_address)}/info", self.metadata_ttl
            )
        except FeedError as exc:
            logger.debug("Holder lookup failed for %s: %s", token_address, exc)
            return None
        holders = _attributes(_data_node(data)).get("holders")
        count = holders.get("count") if isinstance(holders, dict) else holders
        try:
            return int(count) if count is not None else None
        except (TypeError, ValueError):
            return None


def normalize_trades(items: Any) -> list[TradeEvent]:
    if not isinstance(items, list):
        return []
    trades: list[TradeEvent] = []
    for item in items:
        trade = _normalize_trade(item)
        if trade is not None:
            trades.append(trade)
    return trades


def _normalize_trade(item: Any) -> TradeEvent | None:
    if not isinstance(item, dict):
        return None
    trade_id = str(item.get("id") or "").strip()
    if not trade_id:
        return None
    attrs = item.get("attributes")
    if not isinstance(attrs, dict):
        attrs = {}

    side = str(attrs.get("kind") or "").lower()
    if side not in ("buy", "sell"):
        side = "buy"
    # The tracked token is what the trader receives on a buy and gives up on a sell.
    prefix = "from" if side == "sell" else "to"

    price = _float_or_none(attrs.get(f"price_{prefix}_in_usd"))
    if price is None:
        other = "to" if prefix == "from" else "from"
        price = _float_or_none(attrs.get(f"price_{other}_in_usd"))

    return TradeEvent(
        trade_id=trade_id,
        tx_hash=_string_or_none(attrs.get("tx_hash")),
        usd=_float_or_none(attrs.get("volume_in_usd")) or 0.0,
        token_amount=_float_or_none(attrs.get(f"{prefix}_token_amount")) or 0.0,
        price_usd=price or 0.0,
        side=side,
        actor=_string_or_none(attrs.get("tx_from_address")),
        timestamp=_string_or_none(attrs.get("block_timestamp")),
        token_address=_string_or_none(attrs.get(f"{prefix}_token_address")),
    )


def _data_node(data: Any) -> dict[str, Any]:
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        return data["data"]
    return {}


def _attributes(node: dict[str, Any]) -> dict[str, Any]:
    attrs = node.get("attributes")
    return attrs if isinstance(attrs, dict) else {}


def _volume_24h(pool_attrs: dict[str, Any]) -> Any:
    volume = pool_attrs.get("volume_usd")
    if isinstance(volume, dict):
        return volume.get("h24")
    return pool_attrs.get("volume_usd_24h")


def _price_change_24h(token_attrs: dict[str, Any], pool_attrs: dict[str, Any]) -> float | None:
    value = token_attrs.get("price_percent_change_24h")
    if value is None:
        changes = pool_attrs.get("price_change_percentage")
        if isinstance(changes, dict):
            value = changes.get("h24")
    return _float_or_none(value)


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _positive_or_none(value: Any) -> float | None:
    number = _float_or_none(value)
    if number is None or number <= 0:
        return None
    return number


def _string_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

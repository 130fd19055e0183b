from __future__ import annotations

import math
from collections.abc import Sequence
from html import escape
from typing import Any

from .types import Contest, LeaderboardEntry, LinkButton, MarketSnapshot, SubscriberConfig, TradeEvent

SELL_EMOJI = "🔴"
PLACEHOLDER = "—"
MEDALS = ("🥇", "🥈", "🥉")


def tier_emoji(cfg: SubscriberConfig, trade: TradeEvent) -> str:
    if trade.is_sell:
        return SELL_EMOJI
    if trade.usd >= cfg.tiers.large:
        return cfg.emoji.large
    if trade.usd >= cfg.tiers.small:
        return cfg.emoji.mid
    return cfg.emoji.small


def short_address(address: str | None) -> str:
    if not address:
        return "Unknown"
    addr = address.strip()
    if len(addr) <= 12:
        return addr
    return f"{addr[:6]}…{addr[-4:]}"


def format_usd(value: float | None) -> str:
    if value is None or not math.isfinite(value):
        return PLACEHOLDER
    magnitude = abs(value)
    if magnitude >= 1e9:
        return f"{value / 1e9:.2f}B"
    if magnitude >= 1e6:
        return f"{value / 1e6:.2f}M"
    if magnitude >= 1e5:
        return f"{value / 1e3:.2f}K"
    return f"{value:,.0f}"


def format_token_amount(amount: float) -> str:
    if not amount or not math.isfinite(amount):
        return PLACEHOLDER
    text = f"{amount:,.6f}".rstrip("0").rstrip(".")
    return text or "0"


def format_price(price: float) -> str:
    if not price or not math.isfinite(price) or price <= 0:
        return PLACEHOLDER
    return f"${price:.6f}"


def adjust_supply(supply: Any, decimals: Any = 18) -> float:
    """Turn a supply value from the feed into whole-token units.

    Plain integer strings longer than ``decimals + 2`` digits are raw on-chain
    amounts and get scaled down by ``10**decimals``; decimal or exponent
    notation is already adjusted.
    """
    if supply is None:
        return 0.0
    try:
        places = int(decimals) if decimals is not None else 18
    except (TypeError, ValueError):
        places = 18
    text = str(supply).strip()
    if "." in text or "e" in text.lower():
        return _finite_or_zero(text)
    if text.isdigit():
        number = _finite_or_zero(text)
        if len(text) > places + 2:
            return number / (10**places)
        return number
    return _finite_or_zero(text)


def _finite_or_zero(text: str) -> float:
    try:
        number = float(text)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def resolve_market_cap(token_attrs: dict[str, Any], price: float) -> tuple[str, float] | None:
    explicit = _finite_or_zero(str(token_attrs.get("market_cap_usd") or 0))
    if explicit > 0:
        return ("MC", explicit)

    decimals = token_attrs.get("decimals", 18)
    if price > 0:
        circulating = adjust_supply(token_attrs.get("circulating_supply"), decimals)
        if circulating > 0:
            return ("MC", circulating * price)

    fdv = _finite_or_zero(str(token_attrs.get("fdv_usd") or 0))
    if fdv > 0:
        return ("FDV", fdv)

    if price > 0:
        total = adjust_supply(token_attrs.get("total_supply"), decimals)
        if total > 0:
            return ("FDV", total * price)
    return None


def snapshot_lines(snapshot: MarketSnapshot | None) -> list[str]:
    if snapshot is None:
        return []
    lines: list[str] = []
    if snapshot.market_cap is not None:
        label, value = snapshot.market_cap
        lines.append(f"📊 {label}: ${format_usd(value)}")
    if snapshot.liquidity_usd:
        lines.append(f"💧 Liquidity: ${format_usd(snapshot.liquidity_usd)}")
    if snapshot.volume_24h_usd:
        lines.append(f"📈 24h Vol: ${format_usd(snapshot.volume_24h_usd)}")
    if snapshot.price_change_24h_pct is not None:
        pct = snapshot.price_change_24h_pct
        lines.append(f"📊 24h Change: {'+' if pct >= 0 else ''}{pct:.2f}%")
    if snapshot.holders is not None:
        lines.append(f"👥 Holders: {snapshot.holders:,}")
    return lines


def build_tx_link(explorer_tx_url: str, tx_hash: str | None) -> str | None:
    if not tx_hash:
        return None
    return f"{explorer_tx_url}{tx_hash}"


def build_chart_link(chart_base_url: str, network: str, pool_id: str) -> str:
    return f"{chart_base_url.rstrip('/')}/{network}/pools/{pool_id}"


def alert_buttons(chart_url: str | None, tx_url: str | None) -> tuple[LinkButton, ...]:
    buttons: list[LinkButton] = []
    if chart_url:
        buttons.append(LinkButton("📈 Chart", chart_url))
    if tx_url:
        buttons.append(LinkButton("🔎 TX", tx_url))
    return tuple(buttons)


def format_alert_message(
    trade: TradeEvent,
    symbol: str,
    emoji: str,
    snapshot: MarketSnapshot | None = None,
    tx_url: str | None = None,
) -> str:
    action = "SELL" if trade.is_sell else "BUY"
    safe_symbol = escape(symbol, quote=False)

    lines = [
        f"{emoji} <b>{action}</b> • <b>{safe_symbol}</b>",
        f"💵 <b>${trade.usd:.2f}</b>",
        f"🧮 {format_token_amount(trade.token_amount)} {safe_symbol} @ {format_price(trade.price_usd)}",
    ]
    lines.extend(snapshot_lines(snapshot))
    if trade.actor:
        lines.append(f"👤 {escape(short_address(trade.actor), quote=False)}")
    if tx_url:
        lines.append(f'🔗 <a href="{escape(tx_url, quote=True)}">TX</a>')
    return "\n".join(lines)


def format_leaderboard_message(
    contest: Contest, ranking: Sequence[tuple[str, LeaderboardEntry]]
) -> str:
    if not ranking:
        return "🏆 <b>Contest finished!</b>\n\nNo qualifying buys were recorded."

    lines = ["🏆 <b>Contest finished!</b>", ""]
    for idx, (actor, entry) in enumerate(ranking):
        medal = MEDALS[idx] if idx < len(MEDALS) else f"{idx + 1}."
        line = f"{medal} {escape(short_address(actor), quote=False)} — ${entry.usd:,.2f}"
        if idx < len(MEDALS) and idx < len(contest.prizes) and contest.prizes[idx]:
            line += f" 🎁 {escape(contest.prizes[idx], quote=False)}"
        lines.append(line)
    return "\n".join(lines)


def format_feed_gone_message(pool_id: str, symbol: str) -> str:
    return (
        f"⚠️ Pool <code>{escape(pool_id, quote=False)}</code> "
        f"({escape(symbol, quote=False)}) is no longer available upstream "
        "and has been removed from tracking. Add the token again to resume alerts."
    )

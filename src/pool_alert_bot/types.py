from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

CONFIG_VERSION = 1


@dataclass(frozen=True)
class TradeEvent:
    trade_id: str
    tx_hash: str | None
    usd: float
    token_amount: float
    price_usd: float
    side: str
    actor: str | None
    timestamp: str | None
    token_address: str | None

    @property
    def is_sell(self) -> bool:
        return self.side == "sell"


@dataclass(frozen=True)
class TopPool:
    pool_id: str
    symbol: str


@dataclass(frozen=True)
class MarketSnapshot:
    market_cap: tuple[str, float] | None = None
    liquidity_usd: float | None = None
    volume_24h_usd: float | None = None
    price_change_24h_pct: float | None = None
    holders: int | None = None


@dataclass(frozen=True)
class LinkButton:
    text: str
    url: str


class MediaStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MediaRef:
    file_id: str | None = None
    url: str | None = None
    status: MediaStatus = MediaStatus.UNKNOWN

    @property
    def reference(self) -> str | None:
        return self.file_id or self.url

    @property
    def sendable(self) -> bool:
        return self.reference is not None and self.status is not MediaStatus.INVALID


class DeliveryResult(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    GONE = "gone"
    MEDIA_REJECTED = "media_rejected"


@dataclass(frozen=True)
class AlertPayload:
    text: str
    media: MediaRef | None = None
    buttons: tuple[LinkButton, ...] = ()


@dataclass
class TierThresholds:
    small: float = 100.0
    large: float = 1000.0


@dataclass
class TierEmoji:
    small: str = "🟢"
    mid: str = "💎"
    large: str = "🐋"


@dataclass
class LeaderboardEntry:
    usd: float
    first_qualified_at: float


@dataclass
class Contest:
    end_at: float
    min_usd: float = 0.0
    prizes: list[str] = field(default_factory=list)
    leaderboard: dict[str, LeaderboardEntry] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now >= self.end_at

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Contest:
        if not isinstance(raw, dict):
            raise ValueError("contest must be an object")
        board: dict[str, LeaderboardEntry] = {}
        raw_board = raw.get("leaderboard") or {}
        if not isinstance(raw_board, dict):
            raise ValueError("contest leaderboard must be an object")
        for actor, value in raw_board.items():
            # Older records stored a bare cumulative number per actor.
            if isinstance(value, dict):
                board[str(actor)] = LeaderboardEntry(
                    usd=float(value.get("usd", 0) or 0),
                    first_qualified_at=float(value.get("first_qualified_at", 0) or 0),
                )
            else:
                board[str(actor)] = LeaderboardEntry(usd=float(value or 0), first_qualified_at=0.0)
        prizes = raw.get("prizes") or []
        if not isinstance(prizes, list):
            raise ValueError("contest prizes must be a list")
        return cls(
            end_at=float(raw["end_at"]),
            min_usd=float(raw.get("min_usd", 0) or 0),
            prizes=[str(p) for p in prizes],
            leaderboard=board,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "end_at": self.end_at,
            "min_usd": self.min_usd,
            "prizes": list(self.prizes),
            "leaderboard": {
                actor: {"usd": entry.usd, "first_qualified_at": entry.first_qualified_at}
                for actor, entry in self.leaderboard.items()
            },
        }


@dataclass
class SubscriberConfig:
    pools: list[str] = field(default_factory=list)
    min_buy_usd: float = 0.0
    show_sells: bool = False
    tiers: TierThresholds = field(default_factory=TierThresholds)
    emoji: TierEmoji = field(default_factory=TierEmoji)
    media: MediaRef | None = None
    token_symbols: dict[str, str] = field(default_factory=dict)
    contest: Contest | None = None
    version: int = CONFIG_VERSION

    def watches(self, pool_id: str) -> bool:
        return pool_id in self.pools

    def symbol_for(self, pool_id: str) -> str:
        return self.token_symbols.get(pool_id) or "TOKEN"

    @classmethod
    def from_dict(cls, raw: Any) -> SubscriberConfig:
        if not isinstance(raw, dict):
            raise ValueError("subscriber config must be an object")

        pools = raw.get("pools", [])
        if not isinstance(pools, list):
            raise ValueError("pools must be a list")

        tiers_raw = raw.get("tiers") or {}
        emoji_raw = raw.get("emoji") or {}
        if not isinstance(tiers_raw, dict) or not isinstance(emoji_raw, dict):
            raise ValueError("tiers and emoji must be objects")
        defaults_tiers = TierThresholds()
        defaults_emoji = TierEmoji()

        symbols = raw.get("token_symbols", raw.get("tokenSymbols")) or {}
        if not isinstance(symbols, dict):
            raise ValueError("token_symbols must be an object")

        contest_raw = raw.get("contest")

        return cls(
            pools=[str(p) for p in pools],
            min_buy_usd=float(raw.get("min_buy_usd", raw.get("minBuyUsd", 0)) or 0),
            show_sells=_bool_field(raw, "show_sells", "showSells"),
            tiers=TierThresholds(
                small=float(tiers_raw.get("small", defaults_tiers.small)),
                large=float(tiers_raw.get("large", defaults_tiers.large)),
            ),
            emoji=TierEmoji(
                small=str(emoji_raw.get("small", defaults_emoji.small)),
                mid=str(emoji_raw.get("mid", defaults_emoji.mid)),
                large=str(emoji_raw.get("large", defaults_emoji.large)),
            ),
            media=_media_from_dict(raw),
            token_symbols={str(k): str(v) for k, v in symbols.items()},
            contest=Contest.from_dict(contest_raw) if contest_raw else None,
            version=int(raw.get("version", CONFIG_VERSION)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "pools": list(self.pools),
            "min_buy_usd": self.min_buy_usd,
            "show_sells": self.show_sells,
            "tiers": {"small": self.tiers.small, "large": self.tiers.large},
            "emoji": {"small": self.emoji.small, "mid": self.emoji.mid, "large": self.emoji.large},
            "media": (
                {
                    "file_id": self.media.file_id,
                    "url": self.media.url,
                    "status": self.media.status.value,
                }
                if self.media
                else None
            ),
            "token_symbols": dict(self.token_symbols),
            "contest": self.contest.to_dict() if self.contest else None,
        }


def _bool_field(raw: dict[str, Any], key: str, legacy_key: str) -> bool:
    value = raw.get(key, raw.get(legacy_key, False))
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return value


def _media_from_dict(raw: dict[str, Any]) -> MediaRef | None:
    media = raw.get("media")
    if isinstance(media, dict):
        file_id = media.get("file_id") or None
        url = media.get("url") or None
        if not file_id and not url:
            return None
        return MediaRef(
            file_id=file_id,
            url=url,
            status=MediaStatus(media.get("status", MediaStatus.UNKNOWN.value)),
        )
    if media is not None:
        raise ValueError("media must be an object")

    # Legacy records kept the animation reference at the top level.
    file_id = raw.get("gifFileId") or None
    url = raw.get("gifUrl") or None
    if file_id or url:
        return MediaRef(file_id=file_id, url=url)
    return None

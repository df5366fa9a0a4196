"""
Simulator data models — portfolio, holdings, transactions, alerts and the
gamified user profile.  Plain dataclasses with JSON round-tripping so the
whole client state can be persisted as a handful of documents.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set
import copy

INITIAL_CASH = 10000.0
XP_PER_LEVEL = 500
DEFAULT_WATCHLIST = ["bitcoin", "ethereum", "solana"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


# ── Enums ────────────────────────────────────────────────────────
class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"
    BULL_RUN = "bull-run"
    CRYPTO_WINTER = "crypto-winter"


class AchievementCategory(str, Enum):
    TRADING = "trading"
    STREAK = "streak"
    PORTFOLIO = "portfolio"
    EXPLORATION = "exploration"


# ── Ledger entities ──────────────────────────────────────────────
@dataclass(frozen=True)
class Transaction:
    """A single executed buy or sell. Never edited once recorded."""

    id: str
    coin_id: str
    symbol: str
    name: str
    type: TradeType
    quantity: float
    price_per_coin: float
    total_value: float
    fee: float
    timestamp: datetime

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "coin_id": self.coin_id,
            "symbol": self.symbol,
            "name": self.name,
            "type": self.type.value,
            "quantity": self.quantity,
            "price_per_coin": self.price_per_coin,
            "total_value": self.total_value,
            "fee": self.fee,
            "timestamp": _ts(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Transaction":
        return cls(
            id=data["id"],
            coin_id=data["coin_id"],
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            type=TradeType(data["type"]),
            quantity=float(data["quantity"]),
            price_per_coin=float(data["price_per_coin"]),
            total_value=float(data["total_value"]),
            fee=float(data.get("fee", 0.0)),
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass
class Holding:
    """Open position in one coin with its running cost basis."""

    id: str
    coin_id: str
    symbol: str
    name: str
    quantity: float
    average_buy_price: float
    total_invested: float
    image: str = ""
    opened_at: datetime = field(default_factory=utcnow)
    current_price: Optional[float] = None
    current_value: Optional[float] = None
    profit_loss: Optional[float] = None
    profit_loss_percentage: Optional[float] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["opened_at"] = _ts(self.opened_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Holding":
        data = dict(data)
        data["opened_at"] = _parse_ts(data.get("opened_at")) or utcnow()
        return cls(**data)


@dataclass
class Portfolio:
    id: str = "default"
    cash_balance: float = INITIAL_CASH
    holdings: List[Holding] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    total_value: float = INITIAL_CASH
    total_profit_loss: float = 0.0
    total_profit_loss_percentage: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def find_holding(self, coin_id: str) -> Optional[Holding]:
        for h in self.holdings:
            if h.coin_id == coin_id:
                return h
        return None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "cash_balance": self.cash_balance,
            "holdings": [h.to_dict() for h in self.holdings],
            "transactions": [t.to_dict() for t in self.transactions],
            "total_value": self.total_value,
            "total_profit_loss": self.total_profit_loss,
            "total_profit_loss_percentage": self.total_profit_loss_percentage,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Portfolio":
        return cls(
            id=data.get("id", "default"),
            cash_balance=float(data.get("cash_balance", INITIAL_CASH)),
            holdings=[Holding.from_dict(h) for h in data.get("holdings", [])],
            transactions=[Transaction.from_dict(t) for t in data.get("transactions", [])],
            total_value=float(data.get("total_value", INITIAL_CASH)),
            total_profit_loss=float(data.get("total_profit_loss", 0.0)),
            total_profit_loss_percentage=float(data.get("total_profit_loss_percentage", 0.0)),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            updated_at=_parse_ts(data.get("updated_at")) or utcnow(),
        )


# ── Alerts ───────────────────────────────────────────────────────
@dataclass
class PriceAlert:
    id: str
    coin_id: str
    symbol: str
    name: str
    target_price: float
    condition: AlertCondition
    image: str = ""
    is_active: bool = True
    is_triggered: bool = False
    triggered_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_met(self, price: float) -> bool:
        if self.condition == AlertCondition.ABOVE:
            return price >= self.target_price
        return price <= self.target_price

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["condition"] = self.condition.value
        data["triggered_at"] = _ts(self.triggered_at)
        data["created_at"] = _ts(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "PriceAlert":
        data = dict(data)
        data["condition"] = AlertCondition(data["condition"])
        data["triggered_at"] = _parse_ts(data.get("triggered_at"))
        data["created_at"] = _parse_ts(data.get("created_at")) or utcnow()
        return cls(**data)


# ── Profile & achievements ───────────────────────────────────────
@dataclass
class Achievement:
    id: str
    name: str
    description: str
    icon: str
    category: AchievementCategory
    xp_reward: int
    is_unlocked: bool = False
    unlocked_at: Optional[datetime] = None
    progress: Optional[int] = None
    max_progress: Optional[int] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["category"] = self.category.value
        data["unlocked_at"] = _ts(self.unlocked_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Achievement":
        data = dict(data)
        data["category"] = AchievementCategory(data["category"])
        data["unlocked_at"] = _parse_ts(data.get("unlocked_at"))
        return cls(**data)


def _achievement(id, name, description, icon, category, xp_reward, max_progress=None):
    return Achievement(
        id=id, name=name, description=description, icon=icon,
        category=AchievementCategory(category), xp_reward=xp_reward,
        progress=0 if max_progress else None, max_progress=max_progress,
    )


ACHIEVEMENT_CATALOG: List[Achievement] = [
    _achievement("first-trade", "First Steps", "Complete your first trade", "Rocket", "trading", 100),
    _achievement("diamond-hands", "Diamond Hands", "Hold a position for 7 days", "Gem", "trading", 250),
    _achievement("diversified", "Diversified", "Own 5 different coins", "PieChart", "portfolio", 200),
    _achievement("early-bird", "Early Bird", "Check your portfolio before 8 AM", "Sun", "streak", 50),
    _achievement("night-owl", "Night Owl", "Trade after midnight", "Moon", "streak", 50),
    _achievement("week-streak", "Weekly Warrior", "7-day check-in streak", "Flame", "streak", 300, 7),
    _achievement("explorer", "Explorer", "View 10 different coins", "Compass", "exploration", 150, 10),
    _achievement("whale", "Whale Watcher", "Portfolio value reaches $50,000", "Fish", "portfolio", 500),
    _achievement("profit-master", "Profit Master", "Achieve 100% profit on any trade", "TrendingUp", "trading", 400),
    _achievement("alert-setter", "Vigilant Trader", "Set your first price alert", "Bell", "exploration", 75),
]


def default_achievements() -> List[Achievement]:
    return copy.deepcopy(ACHIEVEMENT_CATALOG)


@dataclass
class UserProfile:
    id: str = "default"
    xp: int = 0
    level: int = 1
    streak: int = 0
    last_visit: datetime = field(default_factory=utcnow)
    theme: Theme = Theme.DARK
    achievements: List[Achievement] = field(default_factory=default_achievements)
    watchlist: List[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))
    viewed_coins: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)

    def find_achievement(self, achievement_id: str) -> Optional[Achievement]:
        for a in self.achievements:
            if a.id == achievement_id:
                return a
        return None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "xp": self.xp,
            "level": self.level,
            "streak": self.streak,
            "last_visit": _ts(self.last_visit),
            "theme": self.theme.value,
            "achievements": [a.to_dict() for a in self.achievements],
            "watchlist": list(self.watchlist),
            "viewed_coins": sorted(self.viewed_coins),
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "UserProfile":
        stored = {a["id"]: Achievement.from_dict(a) for a in data.get("achievements", [])}
        # Catalog entries added after the profile was saved start locked
        achievements = [stored.get(a.id, a) for a in default_achievements()]
        return cls(
            id=data.get("id", "default"),
            xp=int(data.get("xp", 0)),
            level=int(data.get("level", 1)),
            streak=int(data.get("streak", 0)),
            last_visit=_parse_ts(data.get("last_visit")) or utcnow(),
            theme=Theme(data.get("theme", Theme.DARK.value)),
            achievements=achievements,
            watchlist=list(data.get("watchlist", DEFAULT_WATCHLIST)),
            viewed_coins=set(data.get("viewed_coins", [])),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
        )

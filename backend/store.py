"""
Application state container — ties the ledger, the gamification engine and
the alert book together and persists every mutation through an injected
StateStore.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging

from alerts_service import AlertBook
from database import StateStore
from gamification import GamificationEngine
from models import Portfolio, PriceAlert, UserProfile
from portfolio_service import PortfolioLedger, TradeRequest, TradeResult

logger = logging.getLogger(__name__)


def _load_slice(state_store: StateStore, key: str, build: Callable):
    raw = state_store.load(key)
    if not raw:
        return None
    try:
        return build(raw)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Persisted %s unreadable, starting fresh: %s", key, exc)
        return None


class AppStore:

    def __init__(self, state_store: StateStore,
                 portfolio: Optional[Portfolio] = None,
                 alerts: Optional[List[PriceAlert]] = None,
                 profile: Optional[UserProfile] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        clock_kw = {"clock": clock} if clock else {}
        self.state_store = state_store
        self.ledger = PortfolioLedger(portfolio, **clock_kw)
        self.gamification = GamificationEngine(profile, **clock_kw)
        self.alert_book = AlertBook(alerts, **clock_kw)

    @classmethod
    def load(cls, state_store: StateStore,
             clock: Optional[Callable[[], datetime]] = None) -> "AppStore":
        """Rebuild from persisted slices; missing or unreadable slices start fresh."""
        return cls(
            state_store,
            portfolio=_load_slice(state_store, "portfolio", Portfolio.from_dict),
            alerts=_load_slice(state_store, "alerts", lambda raw: [PriceAlert.from_dict(a) for a in raw]),
            profile=_load_slice(state_store, "profile", UserProfile.from_dict),
            clock=clock,
        )

    # ── Accessors ────────────────────────────────────────────────
    @property
    def portfolio(self) -> Portfolio:
        return self.ledger.portfolio

    @property
    def profile(self) -> UserProfile:
        return self.gamification.profile

    @property
    def alerts(self) -> List[PriceAlert]:
        return self.alert_book.alerts

    def snapshot(self) -> Dict:
        return {
            "portfolio": self.portfolio.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "profile": self.profile.to_dict(),
        }

    def _persist(self, *keys: str) -> None:
        snap = self.snapshot()
        for key in keys:
            self.state_store.save(key, snap[key])

    # ── Ledger ───────────────────────────────────────────────────
    def execute_trade(self, coin_id: str, trade_type: str, quantity: float,
                      price_per_coin: float, fee: Optional[float] = None,
                      symbol: str = "", name: str = "", image: str = "") -> TradeResult:
        return self.execute(TradeRequest(
            coin_id=coin_id, type=trade_type, quantity=quantity,
            price_per_coin=price_per_coin, fee=fee,
            symbol=symbol, name=name, image=image,
        ))

    def execute(self, req: TradeRequest) -> TradeResult:
        holding = self.portfolio.find_holding(req.coin_id)
        avg_before = holding.average_buy_price if holding else None

        result = self.ledger.execute(req)
        if result:
            self.gamification.on_trade(self.portfolio, result.transaction, avg_before)
            self._persist("portfolio", "profile")
        return result

    def update_holding_prices(self, prices: Dict[str, float]) -> Portfolio:
        portfolio = self.ledger.update_holding_prices(prices)
        self._persist("portfolio")
        return portfolio

    def refresh_prices(self, prices: Dict[str, float]) -> Dict:
        """Revalue holdings, check portfolio milestones and fire due alerts."""
        portfolio = self.ledger.update_holding_prices(prices)
        self.gamification.on_portfolio_revalued(portfolio)
        fired = self.alert_book.check_alerts(prices)
        self._persist("portfolio", "alerts", "profile")
        return {
            "portfolio": portfolio.to_dict(),
            "triggered_alerts": [a.to_dict() for a in fired],
        }

    # ── Alerts ───────────────────────────────────────────────────
    def add_alert(self, coin_id: str, target_price: float, condition: str,
                  symbol: str = "", name: str = "", image: str = "") -> Dict:
        first = not self.alerts
        result = self.alert_book.add_alert(
            coin_id, target_price, condition, symbol=symbol, name=name, image=image,
        )
        if "error" in result:
            return result
        if first:
            self.gamification.unlock_achievement("alert-setter")
        self._persist("alerts", "profile")
        return result

    def remove_alert(self, alert_id: str) -> bool:
        removed = self.alert_book.remove_alert(alert_id)
        if removed:
            self._persist("alerts")
        return removed

    def trigger_alert(self, alert_id: str) -> Optional[PriceAlert]:
        alert = self.alert_book.trigger_alert(alert_id)
        if alert:
            self._persist("alerts")
        return alert

    def check_alerts(self, prices: Dict[str, float]) -> List[PriceAlert]:
        fired = self.alert_book.check_alerts(prices)
        if fired:
            self._persist("alerts")
        return fired

    # ── Profile ──────────────────────────────────────────────────
    def add_xp(self, amount: int) -> bool:
        ok = self.gamification.add_xp(amount)
        if ok:
            self._persist("profile")
        return ok

    def unlock_achievement(self, achievement_id: str) -> bool:
        unlocked = self.gamification.unlock_achievement(achievement_id)
        if unlocked:
            self._persist("profile")
        return unlocked

    def update_streak(self) -> int:
        streak = self.gamification.update_streak()
        self._persist("profile")
        return streak

    def track_coin_view(self, coin_id: str) -> bool:
        unlocked = self.gamification.track_coin_view(coin_id)
        self._persist("profile")
        return unlocked

    def add_to_watchlist(self, coin_id: str) -> List[str]:
        self.gamification.add_to_watchlist(coin_id)
        self._persist("profile")
        return self.profile.watchlist

    def remove_from_watchlist(self, coin_id: str) -> List[str]:
        self.gamification.remove_from_watchlist(coin_id)
        self._persist("profile")
        return self.profile.watchlist

    def set_theme(self, theme: str) -> bool:
        ok = self.gamification.set_theme(theme)
        if ok:
            self._persist("profile")
        return ok

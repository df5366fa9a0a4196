"""
Gamification engine — XP, levels, daily streaks and achievement unlocks
driven by ledger and navigation events.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
import logging

from models import (
    XP_PER_LEVEL, Portfolio, Theme, TradeType, Transaction, UserProfile,
    level_for_xp,
)

logger = logging.getLogger(__name__)

EXPLORER_TARGET = 10
DIVERSIFIED_TARGET = 5
WEEK_STREAK_TARGET = 7
WHALE_VALUE = 50000.0
DIAMOND_HANDS_DAYS = 7
EARLY_BIRD_HOUR = 8        # check-ins before 08:00
NIGHT_OWL_HOURS = (0, 5)   # trades in [00:00, 05:00)
PROFIT_MASTER_MULTIPLE = 2.0


def _local_now() -> datetime:
    return datetime.now().astimezone()


class GamificationEngine:

    def __init__(self, profile: Optional[UserProfile] = None,
                 clock: Callable[[], datetime] = _local_now):
        self.profile = profile or UserProfile(last_visit=clock(), created_at=clock())
        self.clock = clock

    # ── XP & levels ──────────────────────────────────────────────
    def add_xp(self, amount: int) -> bool:
        if amount < 0:
            logger.warning("Ignoring negative XP grant: %s", amount)
            return False
        self._grant(amount)
        return True

    def _grant(self, amount: int) -> None:
        self.profile.xp += amount
        self.profile.level = level_for_xp(self.profile.xp)

    def xp_progress(self) -> Dict:
        into_level = self.profile.xp % XP_PER_LEVEL
        return {
            "xp": self.profile.xp,
            "level": self.profile.level,
            "xp_into_level": into_level,
            "xp_to_next_level": XP_PER_LEVEL - into_level,
            "progress_pct": round(into_level / XP_PER_LEVEL * 100, 2),
        }

    # ── Achievements ─────────────────────────────────────────────
    def unlock_achievement(self, achievement_id: str) -> bool:
        """Unlock once and grant its reward. Returns True only on the first unlock."""
        achievement = self.profile.find_achievement(achievement_id)
        if not achievement or achievement.is_unlocked:
            return False
        achievement.is_unlocked = True
        achievement.unlocked_at = self.clock()
        if achievement.max_progress is not None:
            achievement.progress = achievement.max_progress
        self._grant(achievement.xp_reward)
        logger.info("Achievement unlocked: %s (+%s XP)", achievement_id, achievement.xp_reward)
        return True

    def _set_progress(self, achievement_id: str, value: int) -> None:
        achievement = self.profile.find_achievement(achievement_id)
        if achievement and not achievement.is_unlocked and achievement.max_progress:
            achievement.progress = min(value, achievement.max_progress)

    # ── Streaks ──────────────────────────────────────────────────
    def update_streak(self) -> int:
        now = self.clock()
        days = int((now - self.profile.last_visit).total_seconds() // 86400)
        if days == 1:
            self.profile.streak += 1
        elif days > 1:
            self.profile.streak = 1
        self.profile.last_visit = now

        self._set_progress("week-streak", self.profile.streak)
        if self.profile.streak >= WEEK_STREAK_TARGET:
            self.unlock_achievement("week-streak")
        if now.hour < EARLY_BIRD_HOUR:
            self.unlock_achievement("early-bird")
        return self.profile.streak

    # ── Exploration ──────────────────────────────────────────────
    def track_coin_view(self, coin_id: str) -> bool:
        self.profile.viewed_coins.add(coin_id)
        seen = len(self.profile.viewed_coins)
        self._set_progress("explorer", seen)
        if seen >= EXPLORER_TARGET:
            return self.unlock_achievement("explorer")
        return False

    def add_to_watchlist(self, coin_id: str) -> None:
        if coin_id not in self.profile.watchlist:
            self.profile.watchlist.append(coin_id)

    def remove_from_watchlist(self, coin_id: str) -> None:
        self.profile.watchlist = [c for c in self.profile.watchlist if c != coin_id]

    def set_theme(self, theme: str) -> bool:
        try:
            self.profile.theme = Theme(theme)
        except ValueError:
            return False
        return True

    # ── Ledger hooks ─────────────────────────────────────────────
    def on_trade(self, portfolio: Portfolio, tx: Transaction,
                 average_cost_before: Optional[float] = None) -> None:
        if len(portfolio.transactions) == 1:
            self.unlock_achievement("first-trade")
        start, end = NIGHT_OWL_HOURS
        if start <= self.clock().hour < end:
            self.unlock_achievement("night-owl")
        if len(portfolio.holdings) >= DIVERSIFIED_TARGET:
            self.unlock_achievement("diversified")
        if (tx.type == TradeType.SELL and average_cost_before
                and tx.price_per_coin >= average_cost_before * PROFIT_MASTER_MULTIPLE):
            self.unlock_achievement("profit-master")

    def on_portfolio_revalued(self, portfolio: Portfolio) -> None:
        if portfolio.total_value >= WHALE_VALUE:
            self.unlock_achievement("whale")
        cutoff = self.clock() - timedelta(days=DIAMOND_HANDS_DAYS)
        if any(h.opened_at <= cutoff for h in portfolio.holdings):
            self.unlock_achievement("diamond-hands")

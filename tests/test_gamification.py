import pytest

from gamification import GamificationEngine
from models import Theme, UserProfile
from portfolio_service import PortfolioLedger


@pytest.fixture
def engine(clock):
    return GamificationEngine(UserProfile(last_visit=clock()), clock=clock)


def _unlocked(engine, achievement_id):
    return engine.profile.find_achievement(achievement_id).is_unlocked


@pytest.mark.parametrize("grants,expected_level", [
    ([], 1),
    ([499], 1),
    ([499, 1], 2),
    ([1500], 4),
    ([250, 250, 250, 250], 3),
])
def test_level_tracks_xp(engine, grants, expected_level):
    for amount in grants:
        engine.add_xp(amount)
    assert engine.profile.level == expected_level
    assert engine.profile.level == engine.profile.xp // 500 + 1


def test_negative_xp_rejected(engine):
    engine.add_xp(100)
    assert engine.add_xp(-50) is False
    assert engine.profile.xp == 100


def test_unlock_grants_reward_once(engine, clock):
    assert engine.unlock_achievement("first-trade") is True
    assert engine.unlock_achievement("first-trade") is False
    a = engine.profile.find_achievement("first-trade")
    assert a.unlocked_at == clock()
    assert engine.profile.xp == 100


def test_unlock_unknown_achievement_is_noop(engine):
    assert engine.unlock_achievement("moon-landing") is False
    assert engine.profile.xp == 0


def test_unlock_recomputes_level(engine):
    engine.add_xp(450)
    engine.unlock_achievement("first-trade")
    assert engine.profile.xp == 550
    assert engine.profile.level == 2


def test_streak_by_elapsed_days(engine, clock):
    assert engine.update_streak() == 0
    clock.advance(days=1)
    assert engine.update_streak() == 1
    clock.advance(days=1, hours=2)
    assert engine.update_streak() == 2
    clock.advance(hours=3)
    assert engine.update_streak() == 2
    clock.advance(days=3)
    assert engine.update_streak() == 1
    assert engine.profile.last_visit == clock()


def test_week_streak_unlocks_at_seven(engine, clock):
    engine.profile.streak = 5
    clock.advance(days=1)
    engine.update_streak()
    assert engine.profile.find_achievement("week-streak").progress == 6
    clock.advance(days=1)
    engine.update_streak()
    assert _unlocked(engine, "week-streak")
    assert engine.profile.xp == 300


def test_early_bird_check_in(engine, clock):
    clock.now = clock.now.replace(hour=7)
    engine.update_streak()
    assert _unlocked(engine, "early-bird")


def test_explorer_needs_ten_distinct_coins(engine):
    for i in range(9):
        assert engine.track_coin_view(f"coin-{i}") is False
    engine.track_coin_view("coin-0")
    explorer = engine.profile.find_achievement("explorer")
    assert explorer.progress == 9
    assert not explorer.is_unlocked

    assert engine.track_coin_view("coin-9") is True
    assert explorer.is_unlocked
    assert engine.profile.xp == 150
    assert engine.track_coin_view("coin-10") is False
    assert engine.profile.xp == 150


def test_watchlist_has_set_semantics(engine):
    engine.add_to_watchlist("cardano")
    engine.add_to_watchlist("cardano")
    assert engine.profile.watchlist.count("cardano") == 1
    engine.remove_from_watchlist("bitcoin")
    assert "bitcoin" not in engine.profile.watchlist


def test_set_theme(engine):
    assert engine.set_theme("bull-run")
    assert engine.profile.theme == Theme.BULL_RUN
    assert engine.set_theme("neon") is False
    assert engine.profile.theme == Theme.BULL_RUN


def test_trade_hooks(engine, clock):
    ledger = PortfolioLedger(clock=clock)
    result = ledger.execute_trade("btc", "buy", 1, 100)
    engine.on_trade(ledger.portfolio, result.transaction)
    assert _unlocked(engine, "first-trade")
    assert not _unlocked(engine, "night-owl")

    result = ledger.execute_trade("btc", "sell", 1, 250)
    engine.on_trade(ledger.portfolio, result.transaction, average_cost_before=100)
    assert _unlocked(engine, "profit-master")


def test_night_owl_and_diversified(engine, clock):
    clock.now = clock.now.replace(hour=2)
    ledger = PortfolioLedger(clock=clock)
    for coin in ["btc", "eth", "sol", "ada", "dot"]:
        result = ledger.execute_trade(coin, "buy", 1, 10)
    engine.on_trade(ledger.portfolio, result.transaction)
    assert _unlocked(engine, "night-owl")
    assert _unlocked(engine, "diversified")


def test_portfolio_milestones(engine, clock):
    ledger = PortfolioLedger(clock=clock)
    ledger.execute_trade("btc", "buy", 1, 1000)
    engine.on_portfolio_revalued(ledger.update_holding_prices({"btc": 42000}))
    assert _unlocked(engine, "whale")
    assert not _unlocked(engine, "diamond-hands")

    clock.advance(days=7)
    engine.on_portfolio_revalued(ledger.portfolio)
    assert _unlocked(engine, "diamond-hands")


def test_xp_progress(engine):
    engine.add_xp(1200)
    progress = engine.xp_progress()
    assert progress["level"] == 3
    assert progress["xp_into_level"] == 200
    assert progress["xp_to_next_level"] == 300
    assert progress["progress_pct"] == 40.0

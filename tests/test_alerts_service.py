import pytest

from alerts_service import AlertBook
from models import AlertCondition


@pytest.fixture
def book(clock):
    return AlertBook(clock=clock)


def test_add_alert(book, clock):
    result = book.add_alert("bitcoin", 70000, "above", symbol="btc")
    assert result["status"] == "ok"
    alert = book.alerts[0]
    assert alert.condition == AlertCondition.ABOVE
    assert alert.is_active and not alert.is_triggered
    assert alert.created_at == clock()
    assert result["alert"]["id"] == alert.id


@pytest.mark.parametrize("price,condition", [(0, "above"), (-3, "below"), (10, "equal")])
def test_add_alert_validation(book, price, condition):
    assert "error" in book.add_alert("bitcoin", price, condition)
    assert book.alerts == []


def test_check_alerts_uses_inclusive_thresholds(book):
    book.add_alert("bitcoin", 100, "above")
    book.add_alert("ethereum", 50, "below")
    book.add_alert("solana", 10, "above")

    fired = book.check_alerts({"bitcoin": 100, "ethereum": 50.01})
    assert [a.coin_id for a in fired] == ["bitcoin"]
    assert fired[0].triggered_at is not None

    fired = book.check_alerts({"bitcoin": 150, "ethereum": 50})
    assert [a.coin_id for a in fired] == ["ethereum"]
    assert [a.coin_id for a in book.active()] == ["solana"]
    assert len(book.triggered()) == 2


def test_trigger_is_idempotent(book, clock):
    alert_id = book.add_alert("bitcoin", 1, "below")["alert"]["id"]
    first = book.trigger_alert(alert_id)
    stamp = first.triggered_at
    clock.advance(minutes=5)
    assert book.trigger_alert(alert_id).triggered_at == stamp
    assert book.trigger_alert("nope") is None


def test_remove_alert(book):
    alert_id = book.add_alert("bitcoin", 1, "below")["alert"]["id"]
    assert book.remove_alert(alert_id)
    assert not book.remove_alert(alert_id)
    assert book.alerts == []

"""Price alerts: create, remove, trigger, and evaluate against live prices."""

from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging
import uuid

from models import AlertCondition, PriceAlert, utcnow

logger = logging.getLogger(__name__)


class AlertBook:

    def __init__(self, alerts: Optional[List[PriceAlert]] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.alerts: List[PriceAlert] = alerts if alerts is not None else []
        self.clock = clock

    def add_alert(self, coin_id: str, target_price: float, condition: str,
                  symbol: str = "", name: str = "", image: str = "") -> Dict:
        if target_price <= 0:
            return {"error": "Target price must be positive"}
        try:
            cond = AlertCondition(condition)
        except ValueError:
            return {"error": f"Unknown condition: {condition}"}

        alert = PriceAlert(
            id=f"alert-{uuid.uuid4().hex[:12]}",
            coin_id=coin_id,
            symbol=symbol,
            name=name,
            image=image,
            target_price=target_price,
            condition=cond,
            created_at=self.clock(),
        )
        self.alerts.append(alert)
        return {"status": "ok", "alert": alert.to_dict()}

    def remove_alert(self, alert_id: str) -> bool:
        before = len(self.alerts)
        self.alerts = [a for a in self.alerts if a.id != alert_id]
        return len(self.alerts) < before

    def trigger_alert(self, alert_id: str) -> Optional[PriceAlert]:
        for alert in self.alerts:
            if alert.id == alert_id:
                if not alert.is_triggered:
                    alert.is_triggered = True
                    alert.is_active = False
                    alert.triggered_at = self.clock()
                return alert
        return None

    def check_alerts(self, prices: Dict[str, float]) -> List[PriceAlert]:
        """Trigger every active alert whose condition holds at the given prices."""
        fired: List[PriceAlert] = []
        for alert in self.active():
            price = prices.get(alert.coin_id)
            if price is None or not alert.is_met(price):
                continue
            self.trigger_alert(alert.id)
            logger.info("Alert %s fired: %s %s %s (now %s)", alert.id, alert.coin_id,
                        alert.condition.value, alert.target_price, price)
            fired.append(alert)
        return fired

    def active(self) -> List[PriceAlert]:
        return [a for a in self.alerts if a.is_active and not a.is_triggered]

    def triggered(self) -> List[PriceAlert]:
        return [a for a in self.alerts if a.is_triggered]

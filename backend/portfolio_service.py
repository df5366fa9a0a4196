"""
Portfolio ledger — simulated paper trading with fees, weighted-average
cost basis, and live revaluation against market prices.

Assumptions documented at the bottom of this file.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional
import logging
import uuid

from models import (
    INITIAL_CASH, Holding, Portfolio, TradeType, Transaction, utcnow,
)

logger = logging.getLogger(__name__)

TRADE_FEE_RATE = 0.001   # 0.1% of notional
DUST_QUANTITY = 1e-9     # anything below this is a closed position


def trade_fee(notional: float) -> float:
    return notional * TRADE_FEE_RATE


def quote_trade(amount_usd: float, price: float, trade_type: str) -> Dict:
    """
    Trade-ticket arithmetic for a USD amount at a given coin price.
    Buy: pay amount + fee.  Sell: receive amount − fee.
    """
    try:
        side = TradeType(trade_type)
    except ValueError:
        return {"error": f"Unknown trade type: {trade_type}"}
    if amount_usd <= 0 or price <= 0:
        return {"error": "Amount and price must be positive"}

    fee = trade_fee(amount_usd)
    total = amount_usd + fee if side == TradeType.BUY else amount_usd - fee
    return {
        "type": side.value,
        "amount_usd": amount_usd,
        "price": price,
        "quantity": amount_usd / price,
        "fee": fee,
        "total": total,
    }


# ── Commands & results ───────────────────────────────────────────
@dataclass
class TradeRequest:
    coin_id: str
    type: str
    quantity: float
    price_per_coin: float
    fee: Optional[float] = None
    symbol: str = ""
    name: str = ""
    image: str = ""


@dataclass
class TradeResult:
    success: bool
    reason: Optional[str] = None
    transaction: Optional[Transaction] = None
    portfolio: Optional[Portfolio] = None

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "reason": self.reason,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "portfolio": self.portfolio.to_dict() if self.portfolio else None,
        }


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ── Ledger ───────────────────────────────────────────────────────
class PortfolioLedger:
    """Executes simulated trades against a single in-memory portfolio."""

    def __init__(self, portfolio: Optional[Portfolio] = None,
                 clock: Callable[[], datetime] = utcnow,
                 initial_cash: float = INITIAL_CASH):
        self.portfolio = portfolio or Portfolio(
            cash_balance=initial_cash, total_value=initial_cash,
            created_at=clock(), updated_at=clock(),
        )
        self.clock = clock
        self.initial_cash = initial_cash

    def execute_trade(self, coin_id: str, trade_type: str, quantity: float,
                      price_per_coin: float, fee: Optional[float] = None,
                      symbol: str = "", name: str = "", image: str = "") -> TradeResult:
        return self.execute(TradeRequest(
            coin_id=coin_id, type=trade_type, quantity=quantity,
            price_per_coin=price_per_coin, fee=fee,
            symbol=symbol, name=name, image=image,
        ))

    def execute(self, req: TradeRequest) -> TradeResult:
        """
        Apply a buy or sell. Either every field of the portfolio changes
        or none does; a rejected trade leaves the state untouched.
        """
        try:
            side = TradeType(req.type)
        except ValueError:
            return self._reject(req, f"Unknown trade type: {req.type}")
        if req.quantity <= 0 or req.price_per_coin <= 0:
            return self._reject(req, "Quantity and price must be positive")

        notional = req.quantity * req.price_per_coin
        fee = trade_fee(notional) if req.fee is None else req.fee
        if fee < 0:
            return self._reject(req, "Fee cannot be negative")

        if side == TradeType.BUY:
            cost = notional + fee
            if self.portfolio.cash_balance < cost:
                return self._reject(
                    req, f"Insufficient cash. Need ${cost:.2f}, have ${self.portfolio.cash_balance:.2f}"
                )
            self._apply_buy(req, notional)
            self.portfolio.cash_balance -= cost
        else:
            holding = self.portfolio.find_holding(req.coin_id)
            if not holding or holding.quantity + DUST_QUANTITY < req.quantity:
                avail = holding.quantity if holding else 0
                return self._reject(
                    req, f"Insufficient holdings. Have {avail}, trying to sell {req.quantity}"
                )
            cash_after = self.portfolio.cash_balance + (notional - fee)
            if cash_after < 0:
                return self._reject(
                    req, f"Fee exceeds proceeds. Fee ${fee:.2f}, proceeds ${notional:.2f}"
                )
            self._apply_sell(holding, req.quantity)
            self.portfolio.cash_balance = cash_after

        now = self.clock()
        tx = Transaction(
            id=_new_id("tx"),
            coin_id=req.coin_id,
            symbol=req.symbol,
            name=req.name,
            type=side,
            quantity=req.quantity,
            price_per_coin=req.price_per_coin,
            total_value=notional,
            fee=fee,
            timestamp=now,
        )
        self.portfolio.transactions.insert(0, tx)
        self.portfolio.updated_at = now
        self.update_holding_prices({req.coin_id: req.price_per_coin})

        logger.info("%s %.8f %s at $%.4f (fee $%.4f)",
                    side.value, req.quantity, req.coin_id, req.price_per_coin, fee)
        return TradeResult(success=True, transaction=tx, portfolio=self.portfolio)

    def _reject(self, req: TradeRequest, reason: str) -> TradeResult:
        logger.info("Trade rejected (%s %s): %s", req.type, req.coin_id, reason)
        return TradeResult(success=False, reason=reason, portfolio=self.portfolio)

    def _apply_buy(self, req: TradeRequest, notional: float) -> None:
        holding = self.portfolio.find_holding(req.coin_id)
        if holding:
            # Average cost basis
            holding.quantity += req.quantity
            holding.total_invested += notional
            holding.average_buy_price = holding.total_invested / holding.quantity
        else:
            self.portfolio.holdings.append(Holding(
                id=_new_id("holding"),
                coin_id=req.coin_id,
                symbol=req.symbol,
                name=req.name,
                image=req.image,
                quantity=req.quantity,
                average_buy_price=req.price_per_coin,
                total_invested=notional,
                opened_at=self.clock(),
            ))

    def _apply_sell(self, holding: Holding, quantity: float) -> None:
        quantity = min(quantity, holding.quantity)
        remaining = holding.quantity - quantity
        if remaining <= DUST_QUANTITY:
            self.portfolio.holdings = [
                h for h in self.portfolio.holdings if h.coin_id != holding.coin_id
            ]
            return
        # Proportionally reduce cost basis; average price is unchanged
        sold_ratio = quantity / holding.quantity
        holding.total_invested *= (1 - sold_ratio)
        holding.quantity = remaining

    # ── Valuation ────────────────────────────────────────────────
    def update_holding_prices(self, prices: Dict[str, float]) -> Portfolio:
        """
        Recompute derived valuation fields from the latest prices.
        Missing prices fall back to the last known price, then to the
        average buy price. Calling it twice with the same map is a no-op.
        """
        holdings_value = 0.0
        for h in self.portfolio.holdings:
            current_price = prices.get(h.coin_id) or h.current_price or h.average_buy_price
            h.current_price = current_price
            h.current_value = h.quantity * current_price
            h.profit_loss = h.current_value - h.total_invested
            h.profit_loss_percentage = (
                (h.profit_loss / h.total_invested) * 100 if h.total_invested > 0 else 0.0
            )
            holdings_value += h.current_value

        p = self.portfolio
        p.total_value = p.cash_balance + holdings_value
        p.total_profit_loss = p.total_value - self.initial_cash
        p.total_profit_loss_percentage = (
            (p.total_profit_loss / self.initial_cash) * 100 if self.initial_cash > 0 else 0.0
        )
        return p

    def portfolio_summary(self) -> Dict:
        p = self.portfolio
        holdings_value = sum(h.current_value or 0.0 for h in p.holdings)
        data = p.to_dict()
        data.update({
            "initial_cash": self.initial_cash,
            "holdings_value": round(holdings_value, 4),
            "holdings_count": len(p.holdings),
            "transactions_count": len(p.transactions),
        })
        return data


# ═══════════════════════════════════════════════════════════════
#  ASSUMPTIONS & FORMULAS
# ═══════════════════════════════════════════════════════════════
"""
1. FEES:
   - Flat 0.1% of notional (quantity × price).
   - Buy debits notional + fee; sell credits notional − fee.
   - A sell whose fee would leave cash below zero is rejected.

2. COST BASIS:
   - Buy: total_invested += notional; average = total_invested / quantity.
   - Partial sell: total_invested *= (1 − sold / held); average unchanged.
   - Realized gain on a sell is not tracked separately; it only shows up
     as a change in cash.

3. P&L:
   - Holding P&L = quantity × current_price − total_invested.
   - Portfolio P&L = (cash + Σ holding values) − initial endowment.
"""

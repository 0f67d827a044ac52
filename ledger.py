# src/ledger.py
"""In-memory paper-trading ledger.

``AccountStore`` owns every per-user ``Account`` and is the only thing that
mutates accounts, positions and orders. Market orders resolve synchronously to
``filled`` or ``rejected``; there is no resting order state.

Invariants kept after every mutating call:
- ``equity == balance + sum(position.pnl)``
- ``free_margin == equity - margin``
- a buy never leaves ``free_margin`` negative (pre-checked under the account lock)

Sells consume open long positions on the same symbol oldest first; a sell larger
than the long size held is rejected. Sells never open a short.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from errors import MalformedOrder, PositionNotFound, UnsupportedOrderType
from models import (
    Account,
    AccountState,
    AccountStats,
    AccountSummary,
    AccountView,
    Order,
    Position,
    now_ms,
)
from price_feed import SimulatedPriceTable

logger = logging.getLogger(__name__)

_SIZE_EPSILON = 1e-12


def _new_id(prefix: str) -> str:
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:9]}"


def position_pnl(position: Position, price: float) -> float:
    if position.side == "long":
        return (price - position.entry_price) * position.size
    return (position.entry_price - price) * position.size


class AccountStore:
    def __init__(
        self,
        prices: SimulatedPriceTable,
        starting_balance: float = 10_000.0,
        fee_rate: float = 0.001,
        fallback_price: float = 50_000.0,
        order_history_window: int = 20,
    ) -> None:
        if starting_balance < 0:
            raise ValueError("starting_balance must be >= 0")
        if fee_rate < 0:
            raise ValueError("fee_rate must be >= 0")
        self.prices = prices
        self.starting_balance = starting_balance
        self.fee_rate = fee_rate
        self.fallback_price = fallback_price
        self.order_history_window = order_history_window

        self._accounts: Dict[str, Account] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._accounts)

    def _entry(self, user_id: str) -> Tuple[Account, threading.Lock]:
        with self._registry_lock:
            account = self._accounts.get(user_id)
            if account is None:
                account = Account(
                    balance=self.starting_balance,
                    equity=self.starting_balance,
                    margin=0.0,
                    free_margin=self.starting_balance,
                )
                self._accounts[user_id] = account
                self._locks[user_id] = threading.Lock()
                logger.info("Opened paper account for %s with %.2f", user_id, self.starting_balance)
            return account, self._locks[user_id]

    def get_or_create(self, user_id: str) -> Account:
        account, _ = self._entry(user_id)
        return account

    def _mark_price(self, symbol: str, default: float) -> float:
        price = self.prices.get(symbol)
        return price if price is not None else default

    # --- Aggregates ---

    def recompute(self, account: Account) -> None:
        """Mark every position to the price table and refresh equity/free margin.

        Callers that may race with other writers must hold the account lock.
        """
        total_pnl = 0.0
        for position in account.positions:
            price = self._mark_price(position.symbol, position.entry_price)
            pnl = position_pnl(position, price)
            cost_basis = position.entry_price * position.size
            position.current_price = price
            position.pnl = pnl
            position.pnl_percent = (pnl / cost_basis) * 100.0 if cost_basis else 0.0
            total_pnl += pnl

        account.equity = account.balance + total_pnl
        account.free_margin = account.equity - account.margin

    def refresh(self, user_id: str) -> Account:
        account, lock = self._entry(user_id)
        with lock:
            self.recompute(account)
        return account

    # --- Orders ---

    def place_market_order(
        self,
        user_id: str,
        symbol: str,
        side: str,
        amount: float,
        order_type: str = "market",
    ) -> Order:
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise MalformedOrder("symbol is required")
        if side not in ("buy", "sell"):
            raise MalformedOrder(f"side must be 'buy' or 'sell', got {side!r}")
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise MalformedOrder("amount must be a positive number")
        if order_type != "market":
            raise UnsupportedOrderType("Only market orders are supported for now.")

        account, lock = self._entry(user_id)
        with lock:
            price = self._mark_price(symbol, self.fallback_price)
            notional = amount * price
            fee = notional * self.fee_rate
            total_cost = notional + fee

            self.recompute(account)
            if side == "buy" and total_cost > account.free_margin:
                logger.info(
                    "Rejected buy %s %.8f for %s: cost %.2f > free margin %.2f",
                    symbol, amount, user_id, total_cost, account.free_margin,
                )
                return self._rejected(symbol, side, amount, price, "insufficient_funds")

            if side == "sell" and self._long_size(account, symbol) + _SIZE_EPSILON < amount:
                logger.info("Rejected sell %s %.8f for %s: not enough held", symbol, amount, user_id)
                return self._rejected(symbol, side, amount, price, "insufficient_position")

            order = Order(
                id=_new_id("order"),
                symbol=symbol,
                side=side,
                type="market",
                amount=amount,
                price=price,
                status="filled",
                filled_amount=amount,
                fee=fee,
            )

            if side == "buy":
                account.balance -= total_cost
                account.positions.append(Position(
                    id=_new_id("pos"),
                    symbol=symbol,
                    side="long",
                    size=amount,
                    entry_price=price,
                    current_price=price,
                ))
            else:
                self._reduce_longs(account, symbol, amount)
                account.balance += notional - fee

            account.orders.append(order)
            self.recompute(account)

        logger.info(
            "Filled %s %s %.8f @ %.6f for %s (fee %.4f, balance %.2f)",
            side, symbol, amount, price, user_id, fee, account.balance,
        )
        return order

    def _rejected(self, symbol: str, side: str, amount: float, price: float, reason: str) -> Order:
        return Order(
            id=_new_id("order"),
            symbol=symbol,
            side=side,
            type="market",
            amount=amount,
            price=price,
            status="rejected",
            filled_amount=0.0,
            reason=reason,
        )

    @staticmethod
    def _long_size(account: Account, symbol: str) -> float:
        return sum(p.size for p in account.positions if p.symbol == symbol and p.side == "long")

    @staticmethod
    def _reduce_longs(account: Account, symbol: str, amount: float) -> None:
        remaining = amount
        kept: List[Position] = []
        for position in account.positions:
            if remaining > _SIZE_EPSILON and position.symbol == symbol and position.side == "long":
                take = min(position.size, remaining)
                position.size -= take
                remaining -= take
                if position.size <= _SIZE_EPSILON:
                    continue
            kept.append(position)
        account.positions = kept

    # --- Positions ---

    def close_position(self, user_id: str, position_id: str) -> Tuple[Position, float]:
        """Close ``position_id`` at the current table price. Returns (position, pnl)."""
        account, lock = self._entry(user_id)
        with lock:
            index = next((i for i, p in enumerate(account.positions) if p.id == position_id), None)
            if index is None:
                raise PositionNotFound(position_id)

            position = account.positions[index]
            price = self._mark_price(position.symbol, position.entry_price)
            pnl = position_pnl(position, price)
            position.current_price = price
            position.pnl = pnl

            account.balance += position.entry_price * position.size + pnl
            del account.positions[index]
            self.recompute(account)

        logger.info("Closed %s %s for %s, pnl %.4f", position.id, position.symbol, user_id, pnl)
        return position, pnl

    def oldest_long(self, user_id: str, symbol: str) -> Optional[Position]:
        account, lock = self._entry(user_id)
        symbol = symbol.upper()
        with lock:
            return next(
                (p for p in account.positions if p.symbol == symbol and p.side == "long"),
                None,
            )

    # --- Views ---

    def summary(self, account: Account, with_positions: bool = False) -> AccountSummary:
        return AccountSummary(
            balance=account.balance,
            equity=account.equity,
            free_margin=account.free_margin,
            positions_count=len(account.positions) if with_positions else None,
        )

    def account_view(self, user_id: str) -> AccountView:
        account, lock = self._entry(user_id)
        with lock:
            self.recompute(account)
            positions = [Position(**vars(p)) for p in account.positions]
            orders = [Order(**vars(o)) for o in account.orders[-self.order_history_window:]]
            filled = sum(1 for o in account.orders if o.status == "filled")
            win_rate = filled / len(account.orders) * 100.0 if account.orders else 0.0
            margin_level = account.equity / account.margin * 100.0 if account.margin > 0 else 0.0
            state = AccountState(
                balance=account.balance,
                equity=account.equity,
                margin=account.margin,
                free_margin=account.free_margin,
                margin_level=margin_level,
            )

        return AccountView(
            account=state,
            positions=positions,
            orders=orders,
            summary=AccountStats(
                total_positions=len(positions),
                total_pnl=sum(p.pnl for p in positions),
                win_rate=win_rate,
            ),
        )

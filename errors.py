# src/errors.py
"""Ledger error taxonomy.

Insufficient funds is not an error: it comes back as an order with
``status="rejected"``. These exceptions cover requests the ledger cannot act on.
"""


class LedgerError(Exception):
    """Base class for paper-ledger failures reported to the caller."""

    status_code = 400


class MalformedOrder(LedgerError):
    """Order request is missing a symbol/side or has a non-positive amount."""


class UnsupportedOrderType(LedgerError):
    """Only market orders are executed by the paper ledger."""


class PositionNotFound(LedgerError):
    status_code = 404

    def __init__(self, position_id: str):
        super().__init__(f"Position {position_id} not found.")
        self.position_id = position_id

# bakequote/errors.py
"""Domain errors raised by the pricing and lifecycle engine.

All of these are recoverable by the caller.  The Flask app turns any
``QuoteEngineError`` into a JSON response carrying ``code`` so the client can
show a specific reason.
"""


class QuoteEngineError(Exception):
    code = 'quote_error'
    status_code = 400


class InvalidTransition(QuoteEngineError):
    code = 'invalid_transition'
    status_code = 409

    def __init__(self, current: str, action: str, detail: str | None = None):
        self.current = current
        self.action = action
        msg = f"cannot {action} a quote in status '{current}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class EmptyQuote(QuoteEngineError):
    code = 'empty_quote'
    status_code = 409

    def __init__(self, msg: str = 'quote has no line items'):
        super().__init__(msg)


class InvalidQuoteItem(QuoteEngineError):
    code = 'invalid_item'
    status_code = 400


class AlreadyPaid(QuoteEngineError):
    code = 'already_paid'
    status_code = 409


class OverpaymentAttempt(QuoteEngineError):
    code = 'overpayment'
    status_code = 409

    def __init__(self, amount, outstanding):
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(f"payment of {amount} exceeds outstanding balance {outstanding}")


class DuplicatePaymentNotification(QuoteEngineError):
    """Replay of an already settled payment id. Logged, never surfaced."""
    code = 'duplicate_payment'
    status_code = 200


class CatalogMiscalculation(QuoteEngineError):
    """Selection id missing from the catalog.

    Never raised: the calculator prices the selection at zero and hands these
    back on the breakdown as a data-quality signal.
    """
    code = 'catalog_miscalculation'

    def __init__(self, category: str, item_id: str):
        self.category = category
        self.item_id = item_id
        super().__init__(f"unknown {category} id '{item_id}' priced at 0")

    def __eq__(self, other):
        return (
            isinstance(other, CatalogMiscalculation)
            and (self.category, self.item_id) == (other.category, other.item_id)
        )

    def __hash__(self):
        return hash((self.category, self.item_id))


class MoneyInvariantViolation(AssertionError):
    """Persisted money figures do not reconcile. This is a defect."""

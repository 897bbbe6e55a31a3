"""Typed exceptions for the credit economy."""


class CreditError(Exception):
    """Base class for credit failures."""


class InsufficientCreditsError(CreditError):
    """Balance too low for a spend."""

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits: have {balance}, need {required}")


class InvalidTransactionError(CreditError):
    """Amount outside policy limits, or the balance would overflow its cap."""


class CreditAccountNotFoundError(CreditError):
    """No user with that id."""

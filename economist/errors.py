from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors the command layer reports back to the user."""


class CurrencyNotFound(LedgerError):
    def __init__(self, code: str):
        super().__init__(f"could not find the currency code `{code}`")
        self.code = code


class DuplicateCurrency(LedgerError):
    def __init__(self, code: str):
        super().__init__(f"a currency with code `{code}` already exists")
        self.code = code


class PermissionDenied(LedgerError):
    pass


class InvalidAmount(LedgerError):
    pass

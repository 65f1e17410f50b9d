"""Economist Bot: a Discord ledger of virtual currencies with daily valuation records."""

APP_VERSION = "EconomistBot_v1.4"

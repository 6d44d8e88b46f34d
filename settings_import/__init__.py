"""Spreadsheet import and reconciliation for bills, subscriptions and debts."""

__version__ = "0.3.0"

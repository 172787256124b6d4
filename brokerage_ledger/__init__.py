"""Invoicing and brokerage-ledger backend."""

"""Redial core: ledger, governor, registry and scheduler."""

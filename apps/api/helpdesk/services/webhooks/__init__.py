"""Inbound webhook handlers."""

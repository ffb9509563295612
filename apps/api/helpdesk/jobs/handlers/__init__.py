"""Job handler modules."""

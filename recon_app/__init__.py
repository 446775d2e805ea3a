"""Vista reconciliation application package."""

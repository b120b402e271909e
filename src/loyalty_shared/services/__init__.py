"""Domain services: wallet ledger, order fulfillment and payment coordination."""

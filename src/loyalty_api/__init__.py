"""Flask JSON API exposing the wallet ledger and order fulfillment services."""

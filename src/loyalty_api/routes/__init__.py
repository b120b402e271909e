"""HTTP routes for the loyalty API."""

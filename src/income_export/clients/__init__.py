"""HTTP clients for the exchange API."""

"""HTTP API for PhishGuard."""

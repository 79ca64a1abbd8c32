"""PhishGuard URL threat-scoring engine."""

__version__ = "1.0.0"

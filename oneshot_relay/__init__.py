"""One-time-download file relay: upload once, download once, then it's gone."""

__version__ = "0.1.0"

"""Portfolio Guard: back-office security service for a portfolio site."""

__version__ = "1.0.0"

"""Event enrichment, distribution, IOC matching, Sigma levels and match evidence."""

__version__ = "0.2.0"
"""Operational command-line tools for MarketSync."""

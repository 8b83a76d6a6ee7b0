"""
MarketSync Test Suite.

This package contains:
- unit/: Unit tests (domain, rules, merge engine, stores, config)
- integration/: Integration tests (room service, HTTP API, SDK, CLI)
"""

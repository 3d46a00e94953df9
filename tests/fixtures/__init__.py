"""Shared test fixtures package.

Provides reusable in-memory stores and ledger builders for all test suites.
"""

"""
Tests for the contract source store.
"""

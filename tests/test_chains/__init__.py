"""
Tests for the chain RPC client.
"""

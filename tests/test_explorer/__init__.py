"""
Tests for the block explorer submission protocol.
"""

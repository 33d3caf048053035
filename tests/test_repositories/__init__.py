"""
Tests for the deployment repository.
"""

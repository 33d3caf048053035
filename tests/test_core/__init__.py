"""
Tests for configuration, logging and the command line entry point.
"""

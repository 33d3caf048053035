"""
Tests for the verification worker, scheduler, safety audit and LLM service.
"""

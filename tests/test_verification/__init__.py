"""
Tests for bytecode verification: metadata stripping, compilation and the
level 1 / level 3 engine.
"""

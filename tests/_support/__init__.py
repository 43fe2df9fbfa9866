"""
Test support utilities for jobengine tests.

Helpers that are not fixtures but are shared across test modules.
"""

"""
Utilities package for Share Dumper.

Helpers that support the main application logic without side effects.
"""

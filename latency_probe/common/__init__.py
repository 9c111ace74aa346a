"""
Common module

Phase tracker, errors and the measuring HTTP client.
"""

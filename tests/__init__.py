"""
BDR node controller test suite.

This package contains:
- unit/: Unit tests (test doubles from fakes.py, no engine required)
- integration/: Bootstrap sequence against a temporary storage root
"""

"""
Utility functions package for mediavault.

This package contains:
- Content hashing for checksum verification
"""

from .file_hash import (
    compute_file_sha1,
    hash_stream,
    HashingReader
)

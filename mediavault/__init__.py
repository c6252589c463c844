"""mediavault - storage gateway for local and S3-compatible media libraries."""

__version__ = '0.1.0'

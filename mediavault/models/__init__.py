"""
Database models package for mediavault.
"""

# Import database instance
from mediavault.database import db

from .file_move import FileMove

# Export all models
__all__ = [
    'db',
    'FileMove',
]

"""
FileMove database model for in-flight file relocations.

A row exists from just before a file is moved until the new path has been
committed to the owning entity, so an interrupted move can be finished or
abandoned safely on a later attempt.
"""

from datetime import datetime
from mediavault.database import db


class FileMove(db.Model):
    """Durable record of one pending move, at most one per entity and path type."""

    __tablename__ = 'file_move'
    __table_args__ = (
        db.UniqueConstraint('entity_id', 'path_type', name='uq_file_move_entity_path_type'),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_id = db.Column(db.String(64), nullable=False, index=True)

    # original, preview, thumbnail, fullsize, encoded_video, sidecar, face
    path_type = db.Column(db.String(32), nullable=False)

    old_path = db.Column(db.String(1024), nullable=False)
    new_path = db.Column(db.String(1024), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<FileMove {self.id} {self.entity_id}/{self.path_type}: {self.old_path} -> {self.new_path}>'

    def to_dict(self):
        """Convert move to dictionary for reports."""
        return {
            'id': self.id,
            'entity_id': self.entity_id,
            'path_type': self.path_type,
            'old_path': self.old_path,
            'new_path': self.new_path,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

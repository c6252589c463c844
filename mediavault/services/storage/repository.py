"""Persistence of pending file moves."""

from __future__ import annotations

import logging
from typing import List, Optional

from mediavault.database import db
from mediavault.models import FileMove

logger = logging.getLogger(__name__)


def _path_type_value(path_type) -> str:
    return getattr(path_type, 'value', path_type)


class FileMoveRepository:
    """Create/get/update/delete for FileMove rows. Each call commits its own transaction."""

    def create(self, entity_id: str, path_type, old_path: str, new_path: str) -> FileMove:
        move = FileMove(
            entity_id=str(entity_id),
            path_type=_path_type_value(path_type),
            old_path=old_path,
            new_path=new_path,
        )
        db.session.add(move)
        self._commit()
        return move

    def get_by_entity(self, entity_id: str, path_type) -> Optional[FileMove]:
        return FileMove.query.filter_by(entity_id=str(entity_id), path_type=_path_type_value(path_type)).first()

    def update(self, move_id: int, old_path: Optional[str] = None, new_path: Optional[str] = None) -> FileMove:
        move = db.session.get(FileMove, move_id)
        if move is None:
            raise LookupError(f"FileMove {move_id} not found")
        if old_path is not None:
            move.old_path = old_path
        if new_path is not None:
            move.new_path = new_path
        self._commit()
        return move

    def delete(self, move_id: int) -> None:
        move = db.session.get(FileMove, move_id)
        if move is None:
            return
        db.session.delete(move)
        self._commit()

    def list_pending(self) -> List[FileMove]:
        return FileMove.query.order_by(FileMove.created_at.asc(), FileMove.id.asc()).all()

    def _commit(self) -> None:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.db.model.audit import SyncAuditLog


def record_push(db: Session, *, user_id: Optional[int], entity_type: str, entity_ids: List[str],
                total: int, successful: int, skipped: int, failed: int,
                details: Optional[Dict[str, Any]] = None) -> SyncAuditLog:
    row = SyncAuditLog(
        user_id=user_id,
        action="push_to_store",
        entity_type=entity_type,
        entity_ids=list(entity_ids),
        total=total,
        successful=successful,
        skipped=skipped,
        failed=failed,
        details=details,
    )
    db.add(row)
    db.commit()
    return row

"""
Admin action log.
Append-only rows in admin_logs with an integrity hash over the canonical entry.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict

from sqlalchemy.orm import Session

from ..models.models import AdminLog
from ..config import settings


def log_admin_action(
    db: Session,
    admin_id,
    action_type: str,
    table_name: str,
    record_id,
    changes: Optional[Dict] = None,
) -> AdminLog:
    """
    Stage an admin_logs row in the caller's transaction.

    Args:
        db: Database session
        admin_id: Profile id of the admin (None for system actions)
        action_type: update_user_role|approve_dealership|reject_dealership|...
        table_name: Table the action touched
        record_id: Primary key of the touched row
        changes: Before/after diff or free-form payload

    Returns:
        The pending AdminLog object (not yet committed)
    """
    created_at = datetime.utcnow()
    canonical = {
        "admin_id": str(admin_id) if admin_id else None,
        "action_type": action_type,
        "table_name": table_name,
        "record_id": str(record_id),
        "changes": changes,
        "created_at": created_at.isoformat(),
    }
    canonical = {k: v for k, v in canonical.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    integrity_hash = hashlib.sha256(f"{canonical_json}:{settings.jwt_secret}".encode()).hexdigest()

    entry = AdminLog(
        admin_id=admin_id,
        action_type=action_type,
        table_name=table_name,
        record_id=str(record_id),
        changes=changes,
        integrity_hash=integrity_hash,
        created_at=created_at,
    )
    db.add(entry)
    return entry


def list_admin_logs(
    db: Session,
    table_name: Optional[str] = None,
    record_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    query = db.query(AdminLog)
    if table_name:
        query = query.filter(AdminLog.table_name == table_name)
    if record_id:
        query = query.filter(AdminLog.record_id == str(record_id))
    return query.order_by(AdminLog.created_at.desc(), AdminLog.id.desc()).limit(limit).offset(offset).all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff

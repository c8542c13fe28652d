from __future__ import annotations

from sqlalchemy.orm import Session

from commissary.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    location_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            location_id=location_id,
            meta=metadata or {},
        )
    )

"""
agora.services.batch_service — Tracked Bulk Moderation
=======================================================

A batch is created synchronously (status ``processing``, progress 0) and
then run in the background.  Each target is punished in its own
transaction so one bad id only fails its own entry; ``progress`` is
persisted after every target so the polling endpoint sees it move.

There is no cancellation.  A process restart mid-run leaves the row in
``processing``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agora.database.models import AdminActionType, BatchOperation, BatchStatus, BatchType
from agora.engine.clock import as_utc, utcnow
from agora.services.admin_service import log_admin_action
from agora.services.punishment_service import punish_in_session

logger = logging.getLogger(__name__)

MAX_BATCH_TARGETS = 500

BATCH_TO_PUNISHMENT: dict[str, str] = {
    BatchType.BAN: "ban",
    BatchType.MUTE: "mute",
    BatchType.SUSPEND: "suspend",
    BatchType.WARNING: "warning",
}


def batch_to_dict(op: BatchOperation) -> dict[str, Any]:
    return {
        "id": op.id,
        "admin_id": op.admin_id,
        "type": op.type,
        "targets": op.targets,
        "params": op.params,
        "status": op.status,
        "progress": op.progress,
        "result": op.result,
        "error": op.error,
        "created_at": as_utc(op.created_at).isoformat() if op.created_at else None,
        "completed_at": as_utc(op.completed_at).isoformat() if op.completed_at else None,
    }


def create_batch_operation(
    engine: Engine,
    *,
    admin_id: int,
    type: str,
    target_ids: list[int],
    params: dict[str, Any] | None = None,
) -> BatchOperation:
    """Record a new batch.  Raises :class:`ValueError` on bad input."""
    if type not in BATCH_TO_PUNISHMENT:
        raise ValueError(f"Unknown batch type: {type!r}")
    if not target_ids:
        raise ValueError("Batch needs at least one target")
    if len(target_ids) > MAX_BATCH_TARGETS:
        raise ValueError(f"Batch is limited to {MAX_BATCH_TARGETS} targets")

    with Session(engine, expire_on_commit=False) as session:
        op = BatchOperation(
            admin_id=admin_id,
            type=type,
            targets=list(target_ids),
            params=params or {},
            status=BatchStatus.PROCESSING,
            progress=0,
        )
        session.add(op)
        session.flush()
        log_admin_action(
            session,
            actor_id=admin_id,
            action_type=AdminActionType.BATCH,
            target_table="batch_operations",
            target_id=str(op.id),
            before=None,
            after={"type": type, "targets": list(target_ids), "params": params or {}},
            reason=(params or {}).get("reason"),
        )
        session.commit()
        logger.info("Batch %d (%s) created by %d for %d targets", op.id, type, admin_id, len(target_ids))
        return op


def _apply_target(
    engine: Engine,
    op: BatchOperation,
    target_id: int,
    now: datetime,
) -> dict[str, Any]:
    params = op.params or {}
    if target_id == op.admin_id:
        return {"id": target_id, "success": False, "error": "Admins cannot punish themselves"}
    try:
        with Session(engine) as session:
            punishment = punish_in_session(
                session,
                user_id=target_id,
                admin_id=op.admin_id,
                type=BATCH_TO_PUNISHMENT[op.type],
                severity=int(params.get("severity", 1)),
                reason=params.get("reason") or f"Batch operation #{op.id}",
                duration_minutes=params.get("duration_minutes"),
                now=now,
            )
            if punishment is None:
                return {"id": target_id, "success": False, "error": "User not found"}
            session.commit()
            return {"id": target_id, "success": True}
    except ValueError as exc:
        return {"id": target_id, "success": False, "error": str(exc)}
    except SQLAlchemyError:
        logger.exception(
            "Batch %d failed on target %s", op.id, target_id,
            extra={"batch_id": op.id, "target_id": target_id},
        )
        return {"id": target_id, "success": False, "error": "Database error"}


def _set_progress(engine: Engine, op_id: int, **values: Any) -> None:
    with Session(engine) as session:
        session.execute(update(BatchOperation).where(BatchOperation.id == op_id).values(**values))
        session.commit()


def run_batch_operation(
    engine: Engine,
    operation_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Apply a batch to every target.  Returns the final batch row."""
    with Session(engine, expire_on_commit=False) as session:
        op = session.get(BatchOperation, operation_id)
        if op is None:
            logger.warning("Batch %d not found", operation_id)
            return None
        session.expunge(op)

    if op.status != BatchStatus.PROCESSING:
        logger.warning("Batch %d is already %s", op.id, op.status)
        return batch_to_dict(op)

    now = as_utc(now)
    results: list[dict[str, Any]] = []
    total = len(op.targets)
    try:
        for done, target_id in enumerate(op.targets, start=1):
            results.append(_apply_target(engine, op, target_id, now))
            _set_progress(engine, op.id, progress=round(done / total * 100), result=list(results))
        _set_progress(
            engine, op.id,
            status=BatchStatus.COMPLETED, progress=100, result=results, completed_at=utcnow(),
        )
        ok = sum(1 for r in results if r["success"])
        logger.info("Batch %d completed: %d ok, %d failed", op.id, ok, total - ok)
    except Exception as exc:
        logger.exception("Batch %d crashed", op.id, extra={"batch_id": op.id})
        _set_progress(
            engine, op.id,
            status=BatchStatus.FAILED, result=results, error=str(exc), completed_at=utcnow(),
        )

    return get_batch_operation(engine, op.id)


def get_batch_operation(engine: Engine, operation_id: int) -> dict[str, Any] | None:
    with Session(engine) as session:
        op = session.get(BatchOperation, operation_id)
        return batch_to_dict(op) if op is not None else None

"""
CRUD operations for ExecutionHistoryRecord
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from ..models import ExecutionHistoryRecord


def create_execution_record(
    session: Session,
    user_id: str,
    success: bool,
    started_at: datetime,
    run_id: Optional[str] = None,
    chain_id: Optional[int] = None,
    chain_name: Optional[str] = None,
    input: Optional[Dict[str, Any]] = None,
    steps: Optional[List[Dict[str, Any]]] = None,
    output: Optional[Any] = None,
    error: Optional[str] = None,
    error_code: Optional[str] = None,
    total_duration_ms: int = 0,
    completed_at: Optional[datetime] = None,
) -> ExecutionHistoryRecord:
    """Append an execution history record"""
    record = ExecutionHistoryRecord(
        run_id=run_id,
        user_id=user_id,
        chain_id=chain_id,
        chain_name=chain_name,
        input=input,
        steps=steps,
        output=output,
        success=success,
        error=error,
        error_code=error_code,
        total_duration_ms=total_duration_ms,
        started_at=started_at,
        completed_at=completed_at,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def get_execution_record(session: Session, execution_id: int) -> Optional[ExecutionHistoryRecord]:
    """Get execution record by ID"""
    return session.query(ExecutionHistoryRecord).filter(ExecutionHistoryRecord.id == execution_id).first()


def list_execution_records(
    session: Session,
    user_id: Optional[str] = None,
    chain_id: Optional[int] = None,
    limit: int = 50,
) -> List[ExecutionHistoryRecord]:
    """List execution records, newest first, with optional filtering"""
    query = session.query(ExecutionHistoryRecord)
    if user_id:
        query = query.filter(ExecutionHistoryRecord.user_id == user_id)
    if chain_id is not None:
        query = query.filter(ExecutionHistoryRecord.chain_id == chain_id)
    return (
        query.order_by(desc(ExecutionHistoryRecord.started_at), desc(ExecutionHistoryRecord.id))
        .limit(limit)
        .all()
    )


def execution_totals(session: Session) -> Dict[str, Any]:
    """Total, successful and failed run counts plus the average duration"""
    total, average = session.query(
        func.count(ExecutionHistoryRecord.id),
        func.avg(ExecutionHistoryRecord.total_duration_ms),
    ).one()
    successful = (
        session.query(func.count(ExecutionHistoryRecord.id))
        .filter(ExecutionHistoryRecord.success.is_(True))
        .scalar()
    )
    total = total or 0
    successful = successful or 0
    return {
        "total_executions": total,
        "successful_executions": successful,
        "failed_executions": total - successful,
        "average_duration_ms": int(round(average or 0)),
    }


def list_successful_step_traces(session: Session) -> List[List[Dict[str, Any]]]:
    """Step traces of every successful run"""
    rows = session.query(ExecutionHistoryRecord.steps).filter(ExecutionHistoryRecord.success.is_(True)).all()
    return [steps or [] for (steps,) in rows]

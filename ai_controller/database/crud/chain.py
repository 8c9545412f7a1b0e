"""
CRUD operations for ChainConfigurationRecord
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from ..models import ChainConfigurationRecord, ExecutionHistoryRecord


def create_chain_configuration(
    session: Session,
    user_id: str,
    name: str,
    steps: List[Dict[str, Any]],
    description: Optional[str] = None,
    output_template: Optional[Any] = None,
    meta_data: Optional[Dict[str, Any]] = None,
) -> ChainConfigurationRecord:
    """Create a new chain configuration"""
    now = datetime.utcnow()
    record = ChainConfigurationRecord(
        user_id=user_id,
        name=name,
        description=description,
        steps=steps,
        output_template=output_template,
        meta_data=meta_data,
        created_at=now,
        updated_at=now,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def get_chain_configuration(session: Session, chain_id: int) -> Optional[ChainConfigurationRecord]:
    """Get chain configuration by ID"""
    return session.query(ChainConfigurationRecord).filter(ChainConfigurationRecord.id == chain_id).first()


def list_chain_configurations(session: Session, user_id: str) -> List[ChainConfigurationRecord]:
    """List a user's chains, most recently updated first"""
    return (
        session.query(ChainConfigurationRecord)
        .filter(ChainConfigurationRecord.user_id == user_id)
        .order_by(desc(ChainConfigurationRecord.updated_at), desc(ChainConfigurationRecord.id))
        .all()
    )


def update_chain_configuration(
    session: Session,
    record: ChainConfigurationRecord,
    name: str,
    steps: List[Dict[str, Any]],
    description: Optional[str] = None,
    output_template: Optional[Any] = None,
    meta_data: Optional[Dict[str, Any]] = None,
) -> ChainConfigurationRecord:
    """Replace the definition of a chain (the step list is swapped as a whole)"""
    record.name = name
    record.description = description
    record.steps = steps
    record.output_template = output_template
    record.meta_data = meta_data
    record.updated_at = datetime.utcnow()

    session.commit()
    session.refresh(record)
    return record


def delete_chain_configuration(session: Session, record: ChainConfigurationRecord) -> bool:
    """Delete a chain; its history records keep existing with chain_id cleared"""
    session.query(ExecutionHistoryRecord).filter(
        ExecutionHistoryRecord.chain_id == record.id
    ).update({ExecutionHistoryRecord.chain_id: None}, synchronize_session=False)

    session.delete(record)
    session.commit()
    return True


def count_chain_configurations(session: Session) -> int:
    """Total number of saved chains"""
    return session.query(func.count(ChainConfigurationRecord.id)).scalar() or 0


def count_chains_by_user(session: Session, limit: int = 10) -> List[Dict[str, Any]]:
    """Users with the most chains"""
    count = func.count(ChainConfigurationRecord.id).label("count")
    rows = (
        session.query(ChainConfigurationRecord.user_id, count)
        .group_by(ChainConfigurationRecord.user_id)
        .order_by(desc(count))
        .limit(limit)
        .all()
    )
    return [{"user_id": user_id, "count": total} for user_id, total in rows]

"""
SQLAlchemy models for chain configurations and execution history
"""

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    Text,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class ChainConfigurationRecord(Base):
    """A saved chain owned by one user"""

    __tablename__ = "chain_configurations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)

    # Definition
    steps = Column(JSON, nullable=False)  # Step list, camelCase keys as stored by the chain builder
    output_template = Column(JSON)
    meta_data = Column(JSON)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_chain_configurations_user", "user_id"),
    )

    def __repr__(self):
        return f"<ChainConfigurationRecord(id={self.id}, name={self.name}, user_id={self.user_id})>"


class ExecutionHistoryRecord(Base):
    """One chain run (append-only)"""

    __tablename__ = "execution_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(64))
    user_id = Column(String(255), nullable=False)

    # NULL for ad-hoc runs and for runs of chains deleted since
    chain_id = Column(Integer, ForeignKey("chain_configurations.id", ondelete="SET NULL"))
    chain_name = Column(String(255))

    # Payloads
    input = Column(JSON)
    steps = Column(JSON)  # Per-step trace
    output = Column(JSON)

    # Outcome
    success = Column(Boolean, nullable=False, default=False)
    error = Column(Text)
    error_code = Column(String(50))
    total_duration_ms = Column(Integer, default=0)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=func.now())
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("idx_execution_history_user", "user_id"),
        Index("idx_execution_history_chain", "chain_id"),
        Index("idx_execution_history_started", "started_at"),
    )

    def __repr__(self):
        return f"<ExecutionHistoryRecord(id={self.id}, chain_id={self.chain_id}, success={self.success})>"

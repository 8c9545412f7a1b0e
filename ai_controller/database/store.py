"""
Chain Store

User-scoped persistence for chain configurations and append-only execution
history. Records owned by another user are reported as not found.
"""

import logging
from collections import Counter
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..chains.interpreter import ChainInterpreter
from ..chains.merge import deep_merge
from ..chains.models import ChainConfiguration, ExecutionResult, ExecutionStatus, StepResult
from ..exceptions import ChainNotFoundError, ChainValidationError, PersistenceError
from . import crud
from .models import ChainConfigurationRecord, ExecutionHistoryRecord
from .session import create_db_engine, create_session_factory, get_session, init_db

logger = logging.getLogger(__name__)

MIN_LIST_LIMIT = 1
MAX_LIST_LIMIT = 1000

# Fields a PATCH body may not change
PROTECTED_FIELDS = ("id", "user_id", "created_at", "updated_at")


def clamp_limit(limit: Optional[int], default: int = 50) -> int:
    """Clamp a list limit to 1..1000"""
    if limit is None:
        return default
    return max(MIN_LIST_LIMIT, min(int(limit), MAX_LIST_LIMIT))


class ChainStore:
    """
    Chain and execution history storage

    Usage:
        store = ChainStore("sqlite://")
        chain = store.create_chain(chain)
        store.get_chain(chain.id, chain.user_id)
    """

    def __init__(self, database_url: str, interpreter: Optional[ChainInterpreter] = None, echo: bool = False):
        self.database_url = database_url
        self.interpreter = interpreter or ChainInterpreter()
        self.engine = create_db_engine(database_url, echo=echo)
        self.session_factory = create_session_factory(self.engine)
        init_db(self.engine)

    @contextmanager
    def _session(self, operation: str):
        try:
            with get_session(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise PersistenceError(f"Database error during {operation}: {e}", {"operation": operation})

    def close(self):
        """Release pooled connections"""
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def create_chain(self, chain: ChainConfiguration) -> ChainConfiguration:
        """
        Validate and save a new chain

        Raises:
            ChainValidationError: If the chain is invalid
            PersistenceError: On database failures
        """
        self.interpreter.validate(chain)

        with self._session("create_chain") as session:
            record = crud.create_chain_configuration(
                session,
                user_id=chain.user_id,
                name=chain.name,
                steps=chain.steps_for_storage(),
                description=chain.description,
                output_template=chain.output_template,
                meta_data=chain.meta_data,
            )
            saved = self._to_chain(record)

        logger.info(f"Created chain {saved.id} '{saved.name}' for user {saved.user_id}")
        return saved

    def get_chain(self, chain_id: int, user_id: str) -> ChainConfiguration:
        """
        Get a chain owned by ``user_id``

        Raises:
            ChainNotFoundError: If the chain does not exist or belongs to another user
        """
        with self._session("get_chain") as session:
            record = self._owned_record(session, chain_id, user_id)
            return self._to_chain(record)

    def list_chains(self, user_id: str) -> List[ChainConfiguration]:
        """List a user's chains (records that no longer parse are skipped)"""
        chains = []
        with self._session("list_chains") as session:
            for record in crud.list_chain_configurations(session, user_id):
                try:
                    chains.append(self._to_chain(record))
                except ChainValidationError as e:
                    logger.warning(f"Skipping unreadable chain {record.id}: {e}")
        return chains

    def update_chain(self, chain_id: int, user_id: str, updates: Dict[str, Any]) -> ChainConfiguration:
        """
        Apply a partial update

        The update is deep-merged into the stored definition (lists such as
        steps are replaced as a whole) and the result is fully re-validated
        before anything is written.

        Raises:
            ChainNotFoundError: If the chain does not exist or belongs to another user
            ChainValidationError: If the merged chain is invalid
        """
        with self._session("update_chain") as session:
            record = self._owned_record(session, chain_id, user_id)

            changes = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
            merged = deep_merge(self._record_definition(record), changes)
            chain = self.interpreter.load_from_dict(merged)
            self.interpreter.validate(chain)

            record = crud.update_chain_configuration(
                session,
                record,
                name=chain.name,
                steps=chain.steps_for_storage(),
                description=chain.description,
                output_template=chain.output_template,
                meta_data=chain.meta_data,
            )
            updated = self._to_chain(record)

        logger.info(f"Updated chain {chain_id} for user {user_id}")
        return updated

    def delete_chain(self, chain_id: int, user_id: str) -> None:
        """
        Delete a chain owned by ``user_id``

        Raises:
            ChainNotFoundError: If the chain does not exist or belongs to another user
        """
        with self._session("delete_chain") as session:
            record = self._owned_record(session, chain_id, user_id)
            crud.delete_chain_configuration(session, record)

        logger.info(f"Deleted chain {chain_id} for user {user_id}")

    # ------------------------------------------------------------------
    # Execution history
    # ------------------------------------------------------------------

    def save_execution(self, result: ExecutionResult) -> int:
        """
        Append a history record for a run

        Returns:
            ID of the new record
        """
        with self._session("save_execution") as session:
            record = crud.create_execution_record(
                session,
                run_id=result.run_id,
                user_id=result.user_id,
                chain_id=result.chain_id,
                chain_name=result.chain_name,
                input=result.input,
                steps=[step.model_dump(mode="json") for step in result.steps],
                output=result.output,
                success=result.success,
                error=result.error,
                error_code=result.error_code,
                total_duration_ms=result.total_duration_ms,
                started_at=result.started_at,
                completed_at=result.completed_at,
            )
            return record.id

    def get_execution(self, execution_id: int, user_id: str) -> ExecutionResult:
        """
        Get a history record owned by ``user_id``

        Raises:
            ChainNotFoundError: If the record does not exist or belongs to another user
        """
        with self._session("get_execution") as session:
            record = crud.get_execution_record(session, execution_id)
            if record is None or record.user_id != user_id:
                raise ChainNotFoundError(f"Execution {execution_id} not found")
            return self._to_result(record)

    def list_executions(self, user_id: str, limit: Optional[int] = 50) -> List[ExecutionResult]:
        """A user's runs, newest first (limit clamped to 1..1000)"""
        with self._session("list_executions") as session:
            records = crud.list_execution_records(session, user_id=user_id, limit=clamp_limit(limit))
            return [self._to_result(r) for r in records]

    def list_chain_executions(self, chain_id: int, user_id: str, limit: Optional[int] = 50) -> List[ExecutionResult]:
        """
        Runs of one of the user's chains, newest first

        Raises:
            ChainNotFoundError: If the chain does not exist or belongs to another user
        """
        with self._session("list_chain_executions") as session:
            self._owned_record(session, chain_id, user_id)
            records = crud.list_execution_records(
                session, user_id=user_id, chain_id=chain_id, limit=clamp_limit(limit)
            )
            return [self._to_result(r) for r in records]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Aggregate statistics over all users

        Returns:
            Totals, success/failure counts, average duration, chains per user,
            module calls in successful runs and the ten most recent runs
        """
        with self._session("get_statistics") as session:
            stats = crud.execution_totals(session)

            module_counts = Counter()
            for steps in crud.list_successful_step_traces(session):
                for step in steps:
                    if step.get("module") and not step.get("skipped"):
                        module_counts[step["module"]] += 1

            recent = crud.list_execution_records(session, limit=10)

            stats.update({
                "total_chains": crud.count_chain_configurations(session),
                "chains_by_user": crud.count_chains_by_user(session),
                "executions_by_module": [
                    {"module": module, "count": count} for module, count in module_counts.most_common()
                ],
                "recent_executions": [self._summary(r) for r in recent],
            })
            return stats

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _owned_record(self, session, chain_id: int, user_id: str) -> ChainConfigurationRecord:
        record = crud.get_chain_configuration(session, chain_id)
        if record is None or record.user_id != user_id:
            raise ChainNotFoundError(f"Chain {chain_id} not found")
        return record

    @staticmethod
    def _record_definition(record: ChainConfigurationRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "name": record.name,
            "description": record.description,
            "steps": record.steps,
            "output_template": record.output_template,
            "meta_data": record.meta_data,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    def _to_chain(self, record: ChainConfigurationRecord) -> ChainConfiguration:
        return self.interpreter.load_from_dict(self._record_definition(record))

    @staticmethod
    def _to_result(record: ExecutionHistoryRecord) -> ExecutionResult:
        return ExecutionResult(
            id=record.id,
            run_id=record.run_id,
            user_id=record.user_id,
            chain_id=record.chain_id,
            chain_name=record.chain_name,
            input=record.input or {},
            steps=[StepResult.model_validate(step) for step in record.steps or []],
            output=record.output,
            status=ExecutionStatus.COMPLETED if record.success else ExecutionStatus.FAILED,
            success=record.success,
            error=record.error,
            error_code=record.error_code,
            total_duration_ms=record.total_duration_ms or 0,
            started_at=record.started_at,
            completed_at=record.completed_at,
        )

    @staticmethod
    def _summary(record: ExecutionHistoryRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "user_id": record.user_id,
            "chain_id": record.chain_id,
            "chain_name": record.chain_name,
            "success": record.success,
            "total_duration_ms": record.total_duration_ms,
            "started_at": record.started_at.isoformat() if record.started_at else None,
        }

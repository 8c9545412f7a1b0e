"""
Execution Logger using structlog

Records the event history of one chain run. With a log directory configured
each run gets its own JSONL file; otherwise events go through the stdlib
logger "ai_controller.execution".
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

if TYPE_CHECKING:
    from ..chains.models import ChainConfiguration, ChainStep, ExecutionResult, StepResult

EXECUTION_LOGGER_NAME = "ai_controller.execution"


class ExecutionLogger:
    """Logger for a single chain run (sub-runs share their parent's logger)"""

    def __init__(self, run_id: str, chain_name: str, log_dir: Optional[Path] = None):
        """
        Initialize logger for a specific run

        Args:
            run_id: Unique run ID
            chain_name: Name of the top-level chain
            log_dir: Directory for JSONL files (None = stdlib logging)
        """
        self.run_id = run_id
        self.chain_name = chain_name
        self.log_file: Optional[Path] = None
        self._file = None

        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
            self.log_file = log_dir / f"{timestamp}_{run_id}.jsonl"
            self._file = open(self.log_file, "a")

        self.logger = self._setup_logger()

    def _setup_logger(self):
        """Build a structlog logger with JSON output, bound to this run"""
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ]

        if self._file is not None:
            target = structlog.PrintLogger(file=self._file)
        else:
            target = logging.getLogger(EXECUTION_LOGGER_NAME)

        logger = structlog.wrap_logger(
            target,
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
            context_class=dict,
        )
        return logger.bind(run_id=self.run_id, chain=self.chain_name)

    def log_chain_started(self, chain: ChainConfiguration, input: Dict[str, Any]):
        self.logger.info(
            "chain.started",
            chain_id=chain.id,
            chain_name=chain.name,
            step_count=len(chain.steps),
            input=input,
        )

    def log_step_started(self, step: ChainStep):
        self.logger.debug(
            "step.started",
            step_id=step.id,
            step_type=step.type.value,
            module=step.module.value if step.module else None,
            endpoint=step.endpoint,
        )

    def log_step_finished(self, result: StepResult):
        """Log step.completed or step.failed depending on the result"""
        if result.success:
            self.logger.info(
                "step.completed",
                step_id=result.step_id,
                status=result.status,
                duration_ms=result.duration_ms,
            )
        else:
            self.logger.warning(
                "step.failed",
                step_id=result.step_id,
                status=result.status,
                error=result.error,
                duration_ms=result.duration_ms,
            )

    def log_step_skipped(self, step: ChainStep):
        self.logger.info("step.skipped", step_id=step.id)

    def log_routing_matched(self, step_id: str, matched: Dict[str, Any]):
        self.logger.info("routing.matched", step_id=step_id, **matched)

    def log_chain_finished(self, result: ExecutionResult):
        """Log chain.completed or chain.failed depending on the result"""
        if result.success:
            self.logger.info(
                "chain.completed",
                chain_id=result.chain_id,
                steps_run=len(result.steps),
                duration_ms=result.total_duration_ms,
            )
        else:
            self.logger.error(
                "chain.failed",
                chain_id=result.chain_id,
                error=result.error,
                error_code=result.error_code,
                failed_steps=result.get_failed_steps(),
                duration_ms=result.total_duration_ms,
            )

    def close(self):
        """Close the log file, if any"""
        if self._file is not None:
            self._file.close()
            self._file = None

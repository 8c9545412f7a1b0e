"""
Execution Engine

Runs a chain: groups consecutive parallel steps, dispatches each group
concurrently, records results into the execution context, applies
conditional routing and persists the execution history.
"""

import asyncio
import copy
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from anyio.to_thread import run_sync

from ..exceptions import (
    ChainNotFoundError,
    ChainValidationError,
    ExecutionCancelledError,
    PersistenceError,
    RoutingCycleError,
)
from ..observability import ExecutionLogger
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .interpreter import ChainInterpreter, group_at
from .models import (
    ChainConfiguration,
    ChainStep,
    ExecutionResult,
    ExecutionStatus,
    PipelineOutcome,
    RoutingAction,
    RoutingRule,
    StepResult,
    StepType,
)
from .variables import VariableResolver

logger = logging.getLogger(__name__)


class PipelineRunner(Protocol):
    """External pipeline started after a successful run"""

    async def run_pipeline(self, input: Dict[str, Any]) -> PipelineOutcome:
        ...


class JumpBudget:
    """Routing jump counter shared by a run and every chain it transfers to"""

    def __init__(self, limit: int):
        self.limit = limit
        self.jumps = 0

    def spend(self, target: Any):
        self.jumps += 1
        if self.jumps > self.limit:
            raise RoutingCycleError(self.jumps, self.limit, target)


class _Run:
    """State shared by a top-level run and its sub-runs"""

    def __init__(
        self,
        run_id: str,
        user_id: str,
        env: Dict[str, Any],
        metadata: Dict[str, Any],
        budget: JumpBudget,
        log: ExecutionLogger,
        cancel_event: Optional[asyncio.Event],
    ):
        self.run_id = run_id
        self.user_id = user_id
        self.env = env
        self.metadata = metadata
        self.budget = budget
        self.log = log
        self.cancel_event = cancel_event

    def check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ExecutionCancelledError(f"Run {self.run_id} was cancelled")


class ExecutionEngine:
    """
    Executes chains

    Responsibilities:
    1. Validate the chain before any step runs
    2. Walk the steps group by group (parallel groups run concurrently)
    3. Evaluate skip conditions and routing rules
    4. Run jumped-to and called chains as sub-runs
    5. Build the output and persist the history record
    """

    def __init__(
        self,
        step_executor,
        store=None,
        resolver: Optional[VariableResolver] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        interpreter: Optional[ChainInterpreter] = None,
        max_jumps: int = 50,
        log_dir: Optional[Path] = None,
        pipeline_runner: Optional[PipelineRunner] = None,
    ):
        """
        Args:
            step_executor: Object with ``async execute(step, context) -> StepResult``
            store: ChainStore for loading target chains and saving history (optional)
            max_jumps: Routing jump budget per top-level run
            log_dir: Directory for per-run JSONL logs
            pipeline_runner: Hook run after successful runs that request it
        """
        self.step_executor = step_executor
        self.store = store
        self.resolver = resolver or VariableResolver()
        self.evaluator = evaluator or ConditionEvaluator(self.resolver)
        self.interpreter = interpreter or ChainInterpreter()
        self.max_jumps = max_jumps
        self.log_dir = log_dir
        self.pipeline_runner = pipeline_runner

    async def execute(
        self,
        chain: ChainConfiguration,
        user_id: str,
        input: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        persist: bool = True,
    ) -> ExecutionResult:
        """
        Execute a chain

        Args:
            chain: Chain to run (saved or ad-hoc)
            user_id: Caller; scopes chain lookups and the history record
            input: Caller input, reachable as {{input.*}}
            env: Environment overrides, reachable as {{env.*}}
            metadata: Extra run metadata, reachable as {{context.*}}
            cancel_event: Setting this event cancels the run
            persist: Save the history record through the store

        Returns:
            ExecutionResult (failed runs are results too; nothing is raised
            for validation, step, routing or persistence problems)
        """
        run_id = uuid.uuid4().hex
        log = ExecutionLogger(run_id, chain.name, self.log_dir)
        run = _Run(
            run_id=run_id,
            user_id=user_id,
            env=copy.deepcopy(env or {}),
            metadata=copy.deepcopy(metadata or {}),
            budget=JumpBudget(self.max_jumps),
            log=log,
            cancel_event=cancel_event,
        )

        try:
            result = await self._run_chain(chain, copy.deepcopy(input or {}), run)

            if result.success and self._wants_pipeline(chain):
                result.pipeline = await self._run_pipeline(result)
        finally:
            log.close()

        if persist and self.store is not None:
            try:
                result.id = await run_sync(self.store.save_execution, result)
            except PersistenceError as e:
                logger.error(f"Failed to save execution history for run {run_id}: {e}")
                result.persistence_error = str(e)

        return result

    # ------------------------------------------------------------------
    # Chain walk
    # ------------------------------------------------------------------

    async def _run_chain(
        self,
        chain: ChainConfiguration,
        input: Dict[str, Any],
        run: _Run,
    ) -> ExecutionResult:
        """Run one chain (top-level or sub-run) and return its result"""
        started = time.monotonic()
        result = ExecutionResult(
            run_id=run.run_id,
            user_id=run.user_id,
            chain_id=chain.id,
            chain_name=chain.name,
            input=input,
            started_at=datetime.utcnow(),
            status=ExecutionStatus.RUNNING,
        )

        try:
            self.interpreter.validate(chain)
        except ChainValidationError as e:
            logger.warning(f"Chain '{chain.name}' rejected: {e}")
            return self._finish(result, started, run, error=str(e), error_code="validation")

        context = ExecutionContext(
            input=copy.deepcopy(input),
            env=run.env,
            context={
                **run.metadata,
                "user_id": run.user_id,
                "chain_id": chain.id,
                "chain_name": chain.name,
                "run_id": run.run_id,
            },
        )
        run.log.log_chain_started(chain, input)
        logger.info(f"Executing chain '{chain.name}' ({len(chain.steps)} steps), run {run.run_id}")

        failures: List[str] = []
        try:
            await self._walk(chain, context, result, run, failures)
        except RoutingCycleError as e:
            logger.error(f"Chain '{chain.name}': {e}")
            return self._finish(result, started, run, error=str(e), error_code="routing_cycle", context=context)
        except ExecutionCancelledError as e:
            logger.warning(f"Chain '{chain.name}': {e}")
            return self._finish(result, started, run, error=str(e), error_code="cancelled", context=context)

        result.output = self._build_output(chain, context)
        error = "; ".join(failures) if failures else None
        return self._finish(result, started, run, error=error, context=context)

    async def _walk(
        self,
        chain: ChainConfiguration,
        context: ExecutionContext,
        result: ExecutionResult,
        run: _Run,
        failures: List[str],
    ):
        """Advance the cursor group by group until the chain ends, stops or halts"""
        cursor = 0

        while cursor < len(chain.steps):
            run.check_cancelled()

            indices = group_at(chain.steps, cursor)
            group = [chain.steps[i] for i in indices]
            if len(group) > 1:
                logger.debug(f"Running parallel group: {', '.join(s.id for s in group)}")

            step_results = await self._run_group(group, context, run)

            for step, step_result in zip(group, step_results):
                result.steps.append(step_result)
                if step_result.skipped:
                    continue
                context.record(step.id, step_result.response)
                if not step_result.success:
                    failures.append(f"Step '{step.id}' failed: {step_result.error}")

            halting = [
                step.id for step, r in zip(group, step_results)
                if not r.skipped and not r.success and not step.continue_on_failure
            ]
            if halting:
                logger.warning(f"Stopping chain '{chain.name}' after failed step(s): {', '.join(halting)}")
                return

            next_cursor = indices[-1] + 1
            routed = await self._route(chain, group, step_results, context, run, failures)
            if routed is None:
                cursor = next_cursor
            elif routed[0] == RoutingAction.STOP_CHAIN:
                logger.info(f"Chain '{chain.name}' stopped by routing at step {routed[1]}")
                return
            elif routed[0] == RoutingAction.JUMP_TO_STEP:
                cursor = routed[1]
            else:
                cursor = next_cursor

    async def _run_group(
        self,
        group: List[ChainStep],
        context: ExecutionContext,
        run: _Run,
    ) -> List[StepResult]:
        """Evaluate skip conditions, then run the remaining steps concurrently"""
        results: List[Optional[StepResult]] = [None] * len(group)
        pending = []

        for position, step in enumerate(group):
            # A condition gates its step only once its source step has a result
            if (
                step.condition
                and self.evaluator.source_resolved(step.condition, context)
                and not self.evaluator.evaluate(step.condition, context)
            ):
                run.log.log_step_skipped(step)
                logger.info(f"Skipping step {step.id}: condition not met")
                results[position] = StepResult(
                    step_id=step.id,
                    step_name=step.name,
                    step_type=step.type,
                    module=step.module,
                    endpoint=step.endpoint,
                    method=step.method if step.type == StepType.MODULE_CALL else None,
                    success=True,
                    skipped=True,
                )
            else:
                pending.append(position)

        outcomes = await self._gather(
            [self._run_step(group[position], context, run) for position in pending],
            run,
        )
        for position, outcome in zip(pending, outcomes):
            results[position] = outcome

        return results

    async def _gather(self, coros: list, run: _Run) -> List[StepResult]:
        """
        Join step coroutines in order

        The first task to raise, or the run's cancel event firing, cancels
        every task still running before the error propagates.
        """
        if not coros:
            return []

        tasks = [asyncio.ensure_future(coro) for coro in coros]
        waiter = asyncio.ensure_future(run.cancel_event.wait()) if run.cancel_event else None
        try:
            pending = set(tasks)
            while pending:
                watched = pending | {waiter} if waiter else pending
                done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
                if waiter in done:
                    raise ExecutionCancelledError(f"Run {run.run_id} was cancelled")
                for task in done:
                    pending.discard(task)
                    error = task.exception()
                    if error is not None:
                        raise error
            return [task.result() for task in tasks]
        finally:
            if waiter:
                waiter.cancel()
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.wait(unfinished)

    async def _run_step(self, step: ChainStep, context: ExecutionContext, run: _Run) -> StepResult:
        run.log.log_step_started(step)

        if step.type == StepType.CHAIN_CALL:
            step_result = await self._run_chain_call(step, context, run)
        else:
            step_result = await self.step_executor.execute(step, context)

        run.log.log_step_finished(step_result)
        return step_result

    async def _run_chain_call(self, step: ChainStep, context: ExecutionContext, run: _Run) -> StepResult:
        """Run a saved chain as a step; its output becomes the step's response"""
        started = time.monotonic()
        step_result = StepResult(
            step_id=step.id,
            step_name=step.name,
            step_type=StepType.CHAIN_CALL,
            sub_chain_id=step.chain_id,
            success=False,
        )

        run.budget.spend(step.chain_id)
        sub_input = self._sub_input(step.input_mapping, context)
        sub_result, error = await self._run_sub_chain(step.chain_id, sub_input, run)

        if sub_result is None:
            step_result.error = error
        else:
            step_result.response = sub_result.output
            step_result.success = sub_result.success
            step_result.error = sub_result.error
            step_result.sub_chain_result = sub_result.model_dump(mode="json")

        step_result.duration_ms = int((time.monotonic() - started) * 1000)
        return step_result

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route(
        self,
        chain: ChainConfiguration,
        group: List[ChainStep],
        step_results: List[StepResult],
        context: ExecutionContext,
        run: _Run,
        failures: List[str],
    ) -> Optional[Tuple[RoutingAction, Any]]:
        """
        Evaluate routing rules of a completed group

        Rules are checked in group order, then declared order; the first match
        wins.

        Returns:
            None to continue with the next group, (STOP_CHAIN, step_id),
            (JUMP_TO_STEP, index) or (JUMP_TO_CHAIN, chain_id)
        """
        for step, step_result in zip(group, step_results):
            if step_result.skipped or not step.conditional_routing:
                continue

            step_result.routing_evaluated = True
            for rule in step.conditional_routing:
                if not self.evaluator.evaluate(rule.condition, context):
                    continue

                matched = self._describe_rule(rule)
                step_result.routing_matched = matched
                step_result.routing_action_taken = rule.action.value
                run.log.log_routing_matched(step.id, matched)
                logger.info(f"Routing after step {step.id}: {rule.action.value} -> {rule.target}")

                if rule.action == RoutingAction.STOP_CHAIN:
                    return RoutingAction.STOP_CHAIN, step.id

                run.budget.spend(rule.target)

                if rule.action == RoutingAction.JUMP_TO_STEP:
                    return RoutingAction.JUMP_TO_STEP, chain.step_index(rule.target)

                await self._jump_to_chain(step, step_result, rule, context, run, failures)
                return RoutingAction.JUMP_TO_CHAIN, rule.target

        return None

    async def _jump_to_chain(
        self,
        step: ChainStep,
        step_result: StepResult,
        rule: RoutingRule,
        context: ExecutionContext,
        run: _Run,
        failures: List[str],
    ):
        """Run the target chain and splice its output into the routing step's binding"""
        sub_input = self._sub_input(rule.input_mapping, context)
        sub_result, error = await self._run_sub_chain(rule.target, sub_input, run)

        step_result.sub_chain_id = rule.target
        if sub_result is None:
            failures.append(f"Routing after step '{step.id}' failed: {error}")
            return

        step_result.sub_chain_result = sub_result.model_dump(mode="json")
        context.record(step.id, sub_result.output)
        if not sub_result.success:
            failures.append(f"Chain {rule.target} reached from step '{step.id}' failed: {sub_result.error}")

    async def _run_sub_chain(
        self,
        chain_id: int,
        input: Dict[str, Any],
        run: _Run,
    ) -> Tuple[Optional[ExecutionResult], Optional[str]]:
        """
        Load a chain owned by the run's user and run it with the shared budget

        Returns:
            (result, None), or (None, error) when the chain cannot be loaded

        Raises:
            RoutingCycleError, ExecutionCancelledError: Propagated from the sub-run
        """
        if self.store is None:
            return None, f"Chain {chain_id} cannot be loaded: no chain store configured"

        try:
            target = await run_sync(self.store.get_chain, chain_id, run.user_id)
        except (ChainNotFoundError, PersistenceError) as e:
            logger.warning(f"Target chain {chain_id} unavailable: {e}")
            return None, f"Chain {chain_id} unavailable: {e}"

        sub_result = await self._run_chain(target, input, run)

        if sub_result.error_code == "routing_cycle":
            raise RoutingCycleError(run.budget.jumps, run.budget.limit, chain_id)
        if sub_result.error_code == "cancelled":
            raise ExecutionCancelledError(f"Run {run.run_id} was cancelled")

        return sub_result, None

    def _sub_input(self, mapping: Optional[Dict[str, Any]], context: ExecutionContext) -> Dict[str, Any]:
        if mapping is None:
            return copy.deepcopy(context.input)
        return self.resolver.resolve(mapping, context)

    @staticmethod
    def _describe_rule(rule: RoutingRule) -> Dict[str, Any]:
        return {
            "rule_id": rule.id,
            "action": rule.action.value,
            "target": rule.target,
            "target_name": rule.target_name,
            "description": rule.description,
        }

    # ------------------------------------------------------------------
    # Output and completion
    # ------------------------------------------------------------------

    def _build_output(self, chain: ChainConfiguration, context: ExecutionContext) -> Any:
        """Rendered output_template, or every stored step result keyed by step id"""
        if chain.output_template is not None:
            return self.resolver.resolve(chain.output_template, context)
        return copy.deepcopy(context.steps)

    def _finish(
        self,
        result: ExecutionResult,
        started: float,
        run: _Run,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        context: Optional[ExecutionContext] = None,
    ) -> ExecutionResult:
        if error_code is None and error:
            error_code = "step_failed"

        if result.output is None and context is not None and error_code in ("routing_cycle", "cancelled"):
            result.output = copy.deepcopy(context.steps)

        result.success = error_code is None and not result.get_failed_steps()
        result.error = error
        result.error_code = error_code
        result.status = ExecutionStatus.COMPLETED if result.success else ExecutionStatus.FAILED
        result.completed_at = datetime.utcnow()
        result.total_duration_ms = int((time.monotonic() - started) * 1000)

        run.log.log_chain_finished(result)
        logger.info(
            f"Chain '{result.chain_name}' finished: success={result.success} "
            f"steps={len(result.steps)} duration={result.total_duration_ms}ms"
        )
        return result

    # ------------------------------------------------------------------
    # Pipeline hook
    # ------------------------------------------------------------------

    def _wants_pipeline(self, chain: ChainConfiguration) -> bool:
        return self.pipeline_runner is not None and bool((chain.meta_data or {}).get("trigger_pipeline"))

    async def _run_pipeline(self, result: ExecutionResult) -> PipelineOutcome:
        """Run the pipeline hook; its outcome never changes the run's success"""
        try:
            outcome = await self.pipeline_runner.run_pipeline(copy.deepcopy(result.input))
        except Exception as e:
            logger.error(f"Pipeline hook failed for run {result.run_id}: {e}", exc_info=True)
            return PipelineOutcome(success=False, summary=str(e))
        return outcome

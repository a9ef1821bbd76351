"""Step execution, the idempotency gate, and ordered pipelines.

A handler invocation runs a Pipeline of Stages from the top. Gated stages
consult the CallbackContext and are skipped once they have completed in an
earlier invocation of the same logical operation. Ungated stages run every
time the pipeline reaches them, until a gated stage after them completes.

A MutationStep wraps one provider call: translate the model into a request,
invoke the provider, optionally wait for the mutation to stabilize, and
classify whatever is raised along the way. Stabilization is spread across
invocations: the call is made once, then each invocation polls once and
hands a re-invoke delay back to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic

from .config import HandlerConfig
from .errors import ErrorRuleSet, HandlerErrorCode, handle_exception
from .progress import M, CallbackContext, ProgressEvent

logger = logging.getLogger(__name__)

INVOKED_SUFFIX = ".invoked"
STARTED_AT_SUFFIX = ".started_at"


def exec_once(
    progress: ProgressEvent[M],
    func: Callable[[], ProgressEvent[M]],
    step: str,
    is_complete: Callable[[CallbackContext], bool] | None = None,
    mark_complete: Callable[[CallbackContext], None] | None = None,
) -> ProgressEvent[M]:
    """Run func unless the step already completed in this logical operation.

    Args:
        progress: Current progress.
        func: Step body.
        step: Step name, used as the completion flag key by default.
        is_complete: Reads completion from the context (default: flag lookup).
        mark_complete: Writes completion into the context (default: flag set).

    Returns:
        The unchanged progress when the step is already complete, otherwise
        the step's result. The step is marked complete only when its result
        lets the pipeline continue.
    """
    if is_complete is None:
        is_complete = lambda ctx: ctx.is_complete(step)  # noqa: E731
    if mark_complete is None:
        mark_complete = lambda ctx: ctx.mark_complete(step)  # noqa: E731

    if is_complete(progress.callback_context):
        logger.debug("Step already complete, skipping", extra={"step": step})
        return progress

    result = func()
    if result.can_continue:
        mark_complete(result.callback_context)
    return result


@dataclass(frozen=True)
class MutationStep(Generic[M]):
    """One named provider mutation.

    Attributes:
        name: Step name, unique within a pipeline.
        translate: Builds the provider request from the model.
        invoke: Performs the call: (client, request) -> response.
        stabilize: Single stabilization check: (client, model) -> stable?
            None means the call takes effect synchronously.
        rule_set: Overrides the executor's rule set for this step.
    """

    name: str
    translate: Callable[[M], dict[str, Any]]
    invoke: Callable[[Any, dict[str, Any]], Any]
    stabilize: Callable[[Any, M], bool] | None = None
    rule_set: ErrorRuleSet | None = None


class StepExecutor:
    """Executes MutationSteps against a provider client."""

    def __init__(
        self,
        client: Any,
        config: HandlerConfig,
        rule_set: ErrorRuleSet,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._rule_set = rule_set
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def client(self) -> Any:
        return self._client

    @property
    def delay_seconds(self) -> int:
        return self._config.backoff.delay_seconds

    def execute(self, step: MutationStep[M], progress: ProgressEvent[M]) -> ProgressEvent[M]:
        """Run one step for this invocation.

        Returns:
            A continuing progress when the call succeeded (and stabilized),
            IN_PROGRESS with a delay while stabilizing or after a retryable
            error, FAILED on a terminal error or stabilization timeout.
        """
        context = progress.callback_context
        model = progress.resource_model
        rule_set = step.rule_set or self._rule_set
        invoked_key = step.name + INVOKED_SUFFIX
        started_key = step.name + STARTED_AT_SUFFIX

        try:
            if not context.data.get(invoked_key):
                request = step.translate(model)
                logger.info("Invoking step", extra={"step": step.name})
                step.invoke(self._client, request)

                if step.stabilize is None:
                    return progress

                # The call is not repeated while the mutation settles
                context.data[invoked_key] = True
                context.data[started_key] = self._clock().isoformat()

            # SAFETY: invoked_key is only ever set for steps with a stabilize check
            assert step.stabilize is not None
            if step.stabilize(self._client, model):
                logger.info("Step stabilized", extra={"step": step.name})
                self._clear_stabilization(context, step.name)
                return progress

            if self._timed_out(context, started_key):
                self._clear_stabilization(context, step.name)
                return ProgressEvent.failed(
                    model,
                    context,
                    HandlerErrorCode.NOT_STABILIZED,
                    f"Timed out after {self._config.backoff.timeout_seconds}s "
                    f"waiting for {step.name} to stabilize",
                )

            logger.debug(
                "Step not yet stabilized",
                extra={"step": step.name, "delay_seconds": self.delay_seconds},
            )
            return ProgressEvent.in_progress(model, context, self.delay_seconds)
        except Exception as e:
            return handle_exception(
                ProgressEvent.progress(model, context), e, rule_set, self.delay_seconds
            )

    def _timed_out(self, context: CallbackContext, started_key: str) -> bool:
        started = context.data.get(started_key)
        if not started:
            return False
        elapsed = (self._clock() - datetime.fromisoformat(started)).total_seconds()
        return elapsed > self._config.backoff.timeout_seconds

    @staticmethod
    def _clear_stabilization(context: CallbackContext, step: str) -> None:
        context.data.pop(step + INVOKED_SUFFIX, None)
        context.data.pop(step + STARTED_AT_SUFFIX, None)


@dataclass(frozen=True)
class Stage(Generic[M]):
    """A pipeline stage.

    Attributes:
        name: Stage name; for gated stages also the completion flag key.
        run: Stage body.
        gated: Run at most once per logical operation (idempotency gate).
            Ungated stages re-run on every invocation that reaches them.
        when: Whether the stage applies to this operation at all. Must be
            derived from the immutable previous/desired snapshots so it
            evaluates identically on every invocation.
    """

    name: str
    run: Callable[[ProgressEvent[M]], ProgressEvent[M]]
    gated: bool = True
    when: bool = True


class Pipeline(Generic[M]):
    """Ordered stages of one lifecycle operation."""

    def __init__(self, stages: Sequence[Stage[M]]) -> None:
        names = [stage.name for stage in stages]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate stage names in pipeline: {names}")
        self._stages = list(stages)

    @property
    def stages(self) -> list[Stage[M]]:
        return list(self._stages)

    def run(self, progress: ProgressEvent[M]) -> ProgressEvent[M]:
        for index in range(len(self._stages)):
            progress = progress.then(lambda p, i=index: self._run_stage(i, p))
        return progress

    def pending_stage(self, context: CallbackContext) -> str | None:
        """Name of the first applicable gated stage not yet complete."""
        for stage in self._stages:
            if stage.when and stage.gated and not context.is_complete(stage.name):
                return stage.name
        return None

    def superseded(self, index: int, context: CallbackContext) -> bool:
        """Whether a gated stage after the one at index has already completed.

        Ungated stages ahead of completed work are not re-run.
        """
        return any(
            later.when and later.gated and context.is_complete(later.name)
            for later in self._stages[index + 1 :]
        )

    def _run_stage(self, index: int, progress: ProgressEvent[M]) -> ProgressEvent[M]:
        stage = self._stages[index]
        if not stage.when:
            logger.debug("Stage not applicable, skipping", extra={"stage": stage.name})
            return progress
        if stage.gated:
            return exec_once(progress, lambda: stage.run(progress), stage.name)
        if self.superseded(index, progress.callback_context):
            logger.debug(
                "Later stage already complete, skipping", extra={"stage": stage.name}
            )
            return progress
        return stage.run(progress)

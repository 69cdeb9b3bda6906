"""Round orchestrator: the debate state machine.

::

    INITIALIZING -> PARALLEL_GENERATION -> [DEGRADED]
                 -> CROSS_CRITIQUE -> SCORING -> (PARALLEL_GENERATION | COMPOSING)
                 -> VALIDATING -> FINALIZING

Each phase waits for all of its tasks before the next one starts.  Worker
failures are recorded and routed to degradation; only a phase in which
every worker fails (or, in plan mode, fewer than two succeed) aborts the
run with an ``InsufficientParticipantsError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace

from concord.composer import Composer
from concord.config.schema import ConcordConfig
from concord.diff_source import DiffSource, GitDiffSource
from concord.errors import ConfigurationError, DebateError, InsufficientParticipantsError
from concord.events import EventBus, PhaseEvent
from concord.executor import ProcessExecutor
from concord.extraction import parse_critique_votes
from concord.judge import describe_scores, pick_winner
from concord.logger import run_context
from concord.models import (
    ComposedResult,
    CritiqueResult,
    DebateRequest,
    DebateResult,
    DiffResult,
    Phase,
    RoundRecord,
    StructuredResult,
    ValidationResult,
    WorkerOutput,
)
from concord.modes import SINGLE_AGENT_RISK, DebateModeStrategy, get_mode
from concord.prompts import build_critique_prompt, build_generation_prompt
from concord.registry import WorkerRegistry

logger = logging.getLogger(__name__)

DEGRADED_CONFIDENCE = 50
MIN_REQUESTED_AGENTS = 2

Reporter = Callable[[DebateResult, str], str]


class DebateOrchestrator:
    """Drives one debate per ``run`` call.

    Collaborators are injected at construction: the immutable config, the
    executor that runs workers, the registry used for health checks, the
    diff source, and an optional reporter that turns a finished result
    into an artifact path.
    """

    def __init__(
        self,
        config: ConcordConfig,
        *,
        executor: ProcessExecutor | None = None,
        registry: WorkerRegistry | None = None,
        diff_source: DiffSource | None = None,
        bus: EventBus | None = None,
        reporter: Reporter | None = None,
        check_health: bool = True,
    ) -> None:
        self._config = config
        self._executor = executor or ProcessExecutor(config)
        self._registry = registry or WorkerRegistry(config)
        self._diff_source = diff_source or GitDiffSource(config.git)
        self.bus = bus or EventBus()
        self._reporter = reporter
        self._check_health = check_health

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, request: DebateRequest) -> DebateResult:
        with run_context(mode=request.mode):
            return await self._run(request)

    async def _run(self, request: DebateRequest) -> DebateResult:
        started = time.monotonic()
        mode = get_mode(request.mode)
        self._emit(Phase.INITIALIZING, request, message="Initializing debate")

        workers = self._resolve_workers(request, mode)
        diff = await self._read_input(request, mode)
        context = mode.context_for(request.question, diff)
        diff_files = diff.files if diff is not None else ()

        run = _DebateRun(
            orchestrator=self,
            request=request,
            mode=mode,
            context=context,
            diff_files=diff_files,
            started=started,
        )
        result = await run.execute(workers)

        if self._reporter is not None:
            path = self._reporter(result, request.question)
            result = replace(result, report_path=path)
        self._emit(
            Phase.FINALIZING,
            request,
            message=f"Debate complete: winner {result.winner}, confidence {result.confidence}%",
            data={"winner": result.winner, "confidence": result.confidence, "degraded": result.degraded},
        )
        return result

    # ------------------------------------------------------------------
    # Initializing
    # ------------------------------------------------------------------

    def _resolve_workers(self, request: DebateRequest, mode: DebateModeStrategy) -> list[str]:
        requested = self._registry.resolve(request.agents)
        if len(requested) < MIN_REQUESTED_AGENTS:
            raise ConfigurationError(
                f"At least {MIN_REQUESTED_AGENTS} agents are required for a {mode.name} debate",
                phase=str(Phase.INITIALIZING),
                details={"requested": list(requested)},
            )
        if not self._check_health:
            return list(requested)

        healthy, warnings = self._registry.filter_healthy(requested, min_required=mode.min_workers)
        for warning in warnings:
            logger.warning("%s", warning)
        if not healthy:
            raise InsufficientParticipantsError(
                f"No healthy agents available. Requested agents: {', '.join(requested)}. "
                "Check agent configuration and ensure binaries are accessible.",
                phase=str(Phase.INITIALIZING),
                details={"requested": list(requested)},
            )
        if len(healthy) < mode.min_workers:
            raise InsufficientParticipantsError(
                f"A {mode.name} debate needs at least {mode.min_workers} healthy agents; "
                f"only {len(healthy)} available",
                phase=str(Phase.INITIALIZING),
                details={"healthy": healthy},
            )
        if len(healthy) == 1:
            logger.warning("Only 1 healthy agent available; running in single-agent mode")
        return healthy

    async def _read_input(self, request: DebateRequest, mode: DebateModeStrategy) -> DiffResult | None:
        try:
            diff = await self._diff_source.read(request.path)
        except DebateError as exc:
            if mode.name == "plan":
                logger.info("No git diff available, planning from the question: %s", exc)
                return None
            raise
        logger.info("Found %d changed file(s)", diff.file_count)
        return diff

    # ------------------------------------------------------------------
    # Helpers shared with the run
    # ------------------------------------------------------------------

    def _emit(
        self,
        phase: Phase,
        request: DebateRequest,
        *,
        round: int = 0,
        completed: int = 0,
        total: int = 0,
        message: str = "",
        data: dict | None = None,
    ) -> None:
        self.bus.emit(PhaseEvent(
            phase=str(phase),
            round=round,
            max_rounds=request.max_rounds,
            completed=completed,
            total=total,
            message=message,
            data=data or {},
        ))


class _DebateRun:
    """State for a single ``DebateOrchestrator.run`` call."""

    def __init__(
        self,
        *,
        orchestrator: DebateOrchestrator,
        request: DebateRequest,
        mode: DebateModeStrategy,
        context: str,
        diff_files: Sequence[str],
        started: float,
    ) -> None:
        self.o = orchestrator
        self.config = orchestrator._config
        self.executor = orchestrator._executor
        self.request = request
        self.mode = mode
        self.context = context
        self.diff_files = tuple(diff_files)
        self.started = started
        self.rounds: list[RoundRecord] = []
        self.prompt = build_generation_prompt(request.question, context, request.platform, mode.name)

    def emit(self, phase: Phase, **kwargs) -> None:
        self.o._emit(phase, self.request, **kwargs)

    async def execute(self, workers: list[str]) -> DebateResult:
        round_no = 1
        valid = await self.generate(workers, round_no)

        while True:
            if len(valid) < 2:
                return self.degrade_or_fail(valid, round_no)

            critiques = await self.critique(valid, round_no)
            record = self.score(valid, critiques, round_no)
            self.rounds.append(record)

            if record.confidence >= self.request.confidence_threshold:
                logger.info("Converged at %d%% in round %d", record.confidence, round_no)
                break
            if round_no >= self.request.max_rounds:
                logger.info("Max rounds reached at %d%% confidence", record.confidence)
                break

            logger.info(
                "Confidence %d%% < %d%%, starting round %d",
                record.confidence, self.request.confidence_threshold, round_no + 1,
            )
            round_no += 1
            valid = await self.generate([o.worker_id for o in valid], round_no)

        return await self.finalize()

    # -- ParallelGeneration ------------------------------------------------

    async def generate(self, workers: Sequence[str], round_no: int) -> list[WorkerOutput]:
        total = len(workers)
        completed = 0
        self.emit(Phase.PARALLEL_GENERATION, round=round_no, total=total, message="Parallel generation")

        async def _one(worker: str) -> WorkerOutput:
            nonlocal completed
            result = await self.executor.try_execute(self.executor.task_for(worker, self.prompt))
            structured = StructuredResult() if result.failed else self.mode.parse(result.raw_text)
            completed += 1
            self.emit(
                Phase.PARALLEL_GENERATION,
                round=round_no,
                completed=completed,
                total=total,
                message=f"{worker} completed",
                data={"agent": worker, "failed": result.failed},
            )
            return WorkerOutput(
                worker_id=worker,
                raw_text=result.raw_text,
                structured=structured,
                failed=result.failed,
                error=result.error,
            )

        outputs = await asyncio.gather(*(_one(w) for w in workers))
        min_chars = self.config.debate.min_valid_output_chars
        valid = [o for o in outputs if self.mode.is_valid(o, min_chars)]
        invalid = [o.worker_id for o in outputs if not self.mode.is_valid(o, min_chars)]
        if invalid:
            logger.warning("Round %d: no usable output from %s", round_no, ", ".join(invalid))
        logger.info("Round %d: %d/%d agents produced valid output", round_no, len(valid), total)
        return valid

    def degrade_or_fail(self, valid: list[WorkerOutput], round_no: int) -> DebateResult:
        if not valid:
            raise InsufficientParticipantsError(
                f"No agents produced valid output in round {round_no}. "
                "Check agent configuration, timeouts, and ensure agents are working.",
                phase=str(Phase.PARALLEL_GENERATION),
                details={"round": round_no},
            )
        if not self.mode.degradable:
            raise InsufficientParticipantsError(
                f"A {self.mode.name} debate requires at least 2 working agents; "
                f"only {valid[0].worker_id} produced valid output in round {round_no}",
                phase=str(Phase.PARALLEL_GENERATION),
                details={"round": round_no, "valid": [valid[0].worker_id]},
            )
        return self.degraded(valid[0], round_no)

    # -- DegradedSingleAgent -----------------------------------------------

    def degraded(self, output: WorkerOutput, round_no: int) -> DebateResult:
        worker = output.worker_id
        logger.warning("Only %s produced valid output; falling back to single-agent mode", worker)
        self.emit(Phase.DEGRADED, round=round_no, message=f"Single-agent mode: {worker}", data={"agent": worker})

        scores = self.mode.score([output], self.diff_files, DEGRADED_CONFIDENCE)
        structured = output.structured
        record = RoundRecord(
            round=round_no,
            outputs=(output,),
            critiques=(),
            scores=scores,
            confidence=DEGRADED_CONFIDENCE,
            agreement_matrix={},
        )
        composed = ComposedResult(
            composer=worker,
            proposed=structured.items,
            residual_risks=structured.residual_risks,
            open_questions=structured.open_questions,
            summary=structured.summary,
            raw_text=output.raw_text,
        )
        return DebateResult(
            mode=self.mode.name,
            winner=worker,
            rounds=(record,),
            composed=composed,
            validation=ValidationResult(approved=structured.items),
            final_items=structured.items,
            residual_risks=(*structured.residual_risks, SINGLE_AGENT_RISK),
            open_questions=structured.open_questions,
            confidence=DEGRADED_CONFIDENCE,
            duration_s=time.monotonic() - self.started,
            participants=(worker,),
            summary=structured.summary,
            degraded=True,
        )

    # -- CrossCritique -----------------------------------------------------

    async def critique(self, outputs: list[WorkerOutput], round_no: int) -> tuple[CritiqueResult, ...]:
        pairs = [(r, t) for r in outputs for t in outputs if r.worker_id != t.worker_id]
        total = len(pairs)
        completed = 0
        self.emit(Phase.CROSS_CRITIQUE, round=round_no, total=total, message="Cross-critique")

        async def _one(reviewer: WorkerOutput, target: WorkerOutput) -> CritiqueResult:
            nonlocal completed
            prompt = build_critique_prompt(
                target.worker_id, target.raw_text, self.context, self.request.platform, self.mode.name
            )
            result = await self.executor.try_execute(self.executor.task_for(reviewer.worker_id, prompt))
            votes = () if result.failed else parse_critique_votes(
                result.raw_text,
                reviewer=reviewer.worker_id,
                target=target.worker_id,
                target_items=target.items,
                mode=self.mode.name,
            )
            completed += 1
            self.emit(
                Phase.CROSS_CRITIQUE,
                round=round_no,
                completed=completed,
                total=total,
                message=f"{reviewer.worker_id} critiqued {target.worker_id}",
                data={"agent": reviewer.worker_id, "target": target.worker_id, "votes": len(votes)},
            )
            return CritiqueResult(
                reviewer=reviewer.worker_id,
                target=target.worker_id,
                raw_text=result.raw_text if not result.failed else f"Error: {result.error}",
                votes=votes,
                duration_s=result.duration_s,
                failed=result.failed,
            )

        return tuple(await asyncio.gather(*(_one(r, t) for r, t in pairs)))

    # -- Scoring -----------------------------------------------------------

    def score(
        self,
        outputs: list[WorkerOutput],
        critiques: tuple[CritiqueResult, ...],
        round_no: int,
    ) -> RoundRecord:
        confidence = self.mode.confidence(
            outputs, critiques, self.request.confidence_threshold, self.config.confidence
        )
        scores = self.mode.score(outputs, self.diff_files, confidence.score)
        self.emit(
            Phase.SCORING,
            round=round_no,
            completed=len(outputs),
            total=len(outputs),
            message=f"Confidence: {confidence.score}%",
            data={"confidence": confidence.score, "converged": confidence.converged},
        )
        logger.debug("Round %d scores: %s", round_no, describe_scores(scores))
        return RoundRecord(
            round=round_no,
            outputs=tuple(outputs),
            critiques=critiques,
            scores=scores,
            confidence=confidence.score,
            agreement_matrix=confidence.agreement_matrix,
        )

    # -- Composing / Validating / Finalizing --------------------------------

    async def finalize(self) -> DebateResult:
        last = self.rounds[-1]
        winner = pick_winner(last.scores)
        participants = tuple(o.worker_id for o in last.outputs)
        logger.info("Winner: %s (%s)", winner, describe_scores(last.scores))

        composer = Composer(self.executor, mode=self.mode.name, context=self.context, bus=self.o.bus)
        self.emit(Phase.COMPOSING, round=last.round, total=1, message=f"{winner} composing final result",
                  data={"agent": winner})
        composed = await composer.compose(winner, self.rounds)

        validators = [w for w in participants if w != winner]
        self.emit(Phase.VALIDATING, round=last.round, total=len(validators), message="Running validation")
        validation = await composer.validate(composed.proposed, validators, winner)

        return DebateResult(
            mode=self.mode.name,
            winner=winner,
            rounds=tuple(self.rounds),
            composed=composed,
            validation=validation,
            final_items=validation.approved,
            residual_risks=self.mode.final_residual_risks(
                composed, validation, last, self.config.debate.disputed_risk_cap
            ),
            open_questions=composed.open_questions,
            confidence=last.confidence,
            duration_s=time.monotonic() - self.started,
            participants=participants,
            summary=composed.summary,
        )

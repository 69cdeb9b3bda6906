"""Markdown report for a finished debate.

The report is the only artifact a run leaves behind.  It is rendered from
the immutable ``DebateResult`` after the orchestrator finishes and written
atomically under the output directory as ``review-<timestamp>.md`` or
``plan-<timestamp>.md``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from concord.composer import elimination_reason
from concord.io import write_text_atomic
from concord.models import (
    SEVERITIES,
    CritiqueResult,
    DebateResult,
    Finding,
    Item,
    PlanStep,
    RoundRecord,
    Score,
)

logger = logging.getLogger(__name__)

SEVERITY_HEADINGS = {
    "P0": "P0 - Critical Issues",
    "P1": "P1 - Likely Bugs",
    "P2": "P2 - Minor Issues",
}

VOTE_MARKS = {"agree": "+", "disagree": "-", "modify": "~", "abstain": "?"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def format_item(item: Item, index: int | None = None) -> str:
    prefix = f"{index + 1}. " if index is not None else "- "
    if isinstance(item, Finding):
        ref = f" (`{item.file}`)" if item.file else ""
        lines = [f"{prefix}**[{item.severity}] {item.title}**{ref}"]
        if item.detail:
            lines.append(f"   {item.detail}")
        if item.fix:
            lines.append(f"   *Fix:* {item.fix}")
        return "\n".join(lines)

    lines = [f"{prefix}**{item.title}** (Phase {item.phase})"]
    if item.description:
        lines.append(f"   {item.description}")
    if item.files:
        lines.append("   *Files:* " + ", ".join(f"`{f}`" for f in item.files))
    if item.dependencies:
        lines.append(f"   *Dependencies:* {', '.join(item.dependencies)}")
    if item.consensus > 0:
        lines.append(f"   *Consensus:* {item.consensus}%")
    return "\n".join(lines)


def _bullets(heading: str, entries: Sequence[str]) -> list[str]:
    if not entries:
        return []
    return [f"### {heading}", "", *(f"- {e}" for e in entries), ""]


class MarkdownReporter:
    """Render and write the markdown report for a ``DebateResult``."""

    def __init__(self, output_dir: str | Path, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.output_dir = Path(output_dir)
        self._clock = clock

    def __call__(self, result: DebateResult, question: str) -> str:
        return self.write(result, question)

    def write(self, result: DebateResult, question: str) -> str:
        now = self._clock()
        path = self._target(result.mode, now)
        write_text_atomic(path, self.render(result, question, now=now))
        logger.info("Report written to %s", path)
        return str(path)

    def _target(self, mode: str, now: datetime) -> Path:
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        path = self.output_dir / f"{mode}-{stamp}.md"
        n = 1
        while path.exists():
            path = self.output_dir / f"{mode}-{stamp}-{n}.md"
            n += 1
        return path

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, result: DebateResult, question: str, *, now: datetime | None = None) -> str:
        now = now or self._clock()
        plan = result.mode == "plan"
        lines: list[str] = [
            "# Implementation Plan Report" if plan else "# Debate Review Report",
            "",
            "## Summary",
            "",
            "| Field | Value |",
            "|-------|-------|",
            f"| **Mode** | {result.mode} |",
            f"| **Date** | {now.isoformat()} |",
            f"| **Question** | {_cell(_clip(question, 100))} |",
            f"| **Agents** | {', '.join(result.participants)} |",
            f"| **Rounds** | {len(result.rounds)} |",
            f"| **Final Confidence** | {result.confidence}% |",
            f"| **Winner** | **{result.winner.upper()}** |",
            f"| **Final {'Steps' if plan else 'Findings'}** | {len(result.final_items)} |",
            f"| **Duration** | {result.duration_s:.1f}s |",
        ]
        if result.degraded:
            lines.append("| **Degraded** | single agent, not cross-validated |")
        lines.append("")

        lines += ["---", "", "## Debate Rounds", ""]
        for record in result.rounds:
            lines += self._round(record, result.winner, plan)

        lines += self._composition(result, plan)
        lines += self._validation(result, plan)
        lines += self._final(result, plan)
        return "\n".join(lines)

    def _round(self, record: RoundRecord, winner: str, plan: bool) -> list[str]:
        label = "steps" if plan else "findings"
        lines = [f"### Round {record.round}", "", "#### Agent Plans" if plan else "#### Reviews", ""]
        for output in record.outputs:
            lines.append("<details>")
            lines.append(
                f"<summary><strong>{output.worker_id.upper()}</strong> "
                f"({len(output.items)} {label})</summary>"
            )
            lines.append("")
            if output.items:
                lines += [format_item(item) for item in output.items]
            else:
                lines.append(f"*No {label}*")
            if output.structured.summary:
                lines += ["", f"**Summary:** {output.structured.summary}"]
            if output.structured.residual_risks:
                lines += ["", "**Risks:**" if plan else "**Residual Risks:**"]
                lines += [f"- {risk}" for risk in output.structured.residual_risks]
            lines += ["", "</details>", ""]

        if record.critiques:
            lines += ["#### Cross-Review", ""]
            for critique in record.critiques:
                lines += self._critique(critique, plan)

        lines += ["#### Round Scores", ""]
        lines += self._score_table(record.scores, winner, plan)
        lines += ["", f"**Confidence: {record.confidence}%**", ""]

        if record.agreement_matrix:
            workers = list(record.agreement_matrix)
            lines += ["#### Agreement Matrix", ""]
            lines.append("| Agent | " + " | ".join(workers) + " |")
            lines.append("| --- | " + " | ".join("---" for _ in workers) + " |")
            for a in workers:
                row = [f"{record.agreement_matrix[a].get(b, 0)}%" for b in workers]
                lines.append(f"| {a} | " + " | ".join(row) + " |")
            lines.append("")

        lines += ["---", ""]
        return lines

    def _critique(self, critique: CritiqueResult, plan: bool) -> list[str]:
        lines = [
            "<details>",
            f"<summary><strong>{critique.reviewer.upper()}</strong> critiques "
            f"<strong>{critique.target.upper()}</strong> ({len(critique.votes)} votes)</summary>",
            "",
        ]
        if critique.failed:
            lines.append("*Critique failed*")
        elif critique.votes:
            lines += [f"| {'Step' if plan else 'Finding'} | Vote | Reason |", "|---|---|---|"]
            for vote in critique.votes:
                mark = VOTE_MARKS.get(vote.vote, "?")
                lines.append(f"| {_cell(_clip(vote.item_title, 40))} | {mark} {vote.vote} | {_cell(vote.reason or '-')} |")
        lines += ["", f"*Duration: {critique.duration_s:.1f}s*", "", "</details>", ""]
        return lines

    @staticmethod
    def _score_table(scores: dict[str, Score], winner: str, plan: bool) -> list[str]:
        if plan:
            lines = [
                "| Agent | Clarity | Completeness | Feasibility | Consensus | Total |",
                "|-------|---------|--------------|-------------|-----------|-------|",
            ]
        else:
            lines = [
                "| Agent | P0 | P1 | P2 | False+ | Fixes | Accuracy | Clarity | Total |",
                "|-------|----|----|----|--------|-------|----------|---------|-------|",
            ]
        for worker, score in sorted(scores.items(), key=lambda kv: -kv[1].total):
            name = f"{worker} **" if worker == winner else worker
            cells = " | ".join(str(v) for v in score.components().values())
            lines.append(f"| {name} | {cells} | **{score.total}** |")
        return lines

    @staticmethod
    def _composition(result: DebateResult, plan: bool) -> list[str]:
        composed = result.composed
        label = "Steps" if plan else "Findings"
        lines = ["## Winner Composition", "", f"**Composer:** {composed.composer.upper()}", ""]
        if composed.summary:
            lines += [f"**Summary:** {composed.summary}", ""]
        if composed.proposed:
            lines += [f"### Proposed {label}", ""]
            lines += [format_item(item, i) for i, item in enumerate(composed.proposed)]
            lines.append("")
        if composed.eliminated:
            lines += [f"### Eliminated {label}", "", f"| {label[:-1]} | Reason |", "|---|---|"]
            for item in composed.eliminated:
                reason = elimination_reason(composed, item) or getattr(item, "detail", "") or "No reason"
                lines.append(f"| {_cell(item.title)} | {_cell(reason)} |")
            lines.append("")
        return lines

    @staticmethod
    def _validation(result: DebateResult, plan: bool) -> list[str]:
        lines = ["---", "", "## Validation", ""]
        votes = result.validation.votes
        if not votes:
            lines += ["*No validators*" if not result.degraded else "*Skipped in single-agent mode*", ""]
            return lines

        tally: dict[int, tuple[list[str], list[str]]] = {}
        for vote in votes:
            approves, rejects = tally.setdefault(vote.item_index, ([], []))
            (approves if vote.vote == "approve" else rejects).append(vote.voter)

        proposed = result.composed.proposed
        lines += [f"| {'Step' if plan else 'Finding'} | Approves | Rejects | Result |", "|---|---|---|---|"]
        for index in sorted(tally):
            approves, rejects = tally[index]
            title = proposed[index].title if 0 <= index < len(proposed) else f"#{index}"
            status = "Approved" if len(approves) >= len(rejects) else "Rejected"
            lines.append(
                f"| {_cell(_clip(title, 30))} | {', '.join(approves)} | {', '.join(rejects)} | {status} |"
            )
        lines.append("")
        return lines

    @staticmethod
    def _final(result: DebateResult, plan: bool) -> list[str]:
        lines = ["---", "", "## Final Implementation Plan" if plan else "## Final Result", ""]
        items = result.final_items
        if not items:
            lines += ["*No implementation steps finalized*" if plan else "*No issues found*", ""]
        elif plan:
            by_phase: dict[int, list[PlanStep]] = {}
            for step in items:
                by_phase.setdefault(step.phase, []).append(step)
            for phase in sorted(by_phase):
                lines += [f"### Phase {phase}", ""]
                lines += [format_item(step, i) for i, step in enumerate(by_phase[phase])]
                lines.append("")
        else:
            for severity in SEVERITIES:
                group = [f for f in items if f.severity == severity]
                if group:
                    lines += [f"### {SEVERITY_HEADINGS[severity]}", ""]
                    lines += [format_item(f) for f in group]
                    lines.append("")

        lines += _bullets("Risks" if plan else "Residual Risks", result.residual_risks)
        lines += _bullets("Open Questions", result.open_questions)
        return lines


def report_dir(path: str | None, output_dir: str) -> Path:
    """Directory reports go to: *output_dir* under the debated path (or cwd)."""
    base = Path(path) if path else Path.cwd()
    return base / output_dir

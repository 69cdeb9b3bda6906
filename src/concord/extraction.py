"""Structured-output extraction from free-text worker responses.

Workers are asked for JSON but often wrap it in prose.  ``extract`` finds
the first top-level JSON object and returns ``Parsed``; when there is none
it returns ``Unparsed`` and callers pick the fallback.  Every public
``parse_*`` function here is total: bad input yields an empty or default
structure, never an exception.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

from concord.models import (
    SEVERITIES,
    ComposedResult,
    CritiqueVote,
    DebateMode,
    Finding,
    Item,
    PlanStep,
    StructuredResult,
    ValidationVote,
)

_DECODER = json.JSONDecoder()


@dataclass(frozen=True, slots=True)
class Parsed:
    payload: dict[str, Any]
    raw_text: str


@dataclass(frozen=True, slots=True)
class Unparsed:
    raw_text: str


Extraction = Union[Parsed, Unparsed]


def find_json_object(text: str) -> dict[str, Any] | None:
    """Return the first decodable JSON object embedded in *text*."""
    idx = text.find("{")
    while idx != -1:
        try:
            value, _ = _DECODER.raw_decode(text, idx)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(value, dict):
                return value
        idx = text.find("{", idx + 1)
    return None


def extract(raw_text: str) -> Extraction:
    payload = find_json_object(raw_text or "")
    if payload is None:
        return Unparsed(raw_text or "")
    return Parsed(payload, raw_text)


# ---------------------------------------------------------------------------
# Field normalisation
# ---------------------------------------------------------------------------


def _str_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value)


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _phase(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    return 1


def normalize_finding(raw: dict[str, Any], *, default_title: str = "Untitled Issue") -> Finding:
    severity = str(raw.get("severity") or "").strip().upper()
    if severity not in SEVERITIES:
        severity = "P2"
    return Finding(
        severity=severity,  # type: ignore[arg-type]
        title=str(raw.get("title") or default_title),
        file=str(raw["file"]) if raw.get("file") else None,
        line=_as_int(raw.get("line")) or None,
        detail=str(raw.get("detail") or raw.get("description") or ""),
        fix=str(raw.get("fix") or raw.get("suggestion") or ""),
    )


def normalize_step(raw: dict[str, Any], *, default_title: str = "Untitled Step") -> PlanStep:
    consensus = raw.get("consensus")
    return PlanStep(
        phase=_phase(raw.get("phase")),
        title=str(raw.get("title") or default_title),
        description=str(raw.get("description") or ""),
        files=_str_list(raw.get("files")),
        dependencies=_str_list(raw.get("dependencies")),
        consensus=int(consensus) if isinstance(consensus, (int, float)) and not isinstance(consensus, bool) else 0,
    )


# ---------------------------------------------------------------------------
# Legacy free-text fallback (review mode)
# ---------------------------------------------------------------------------

_LEGACY_FINDING = re.compile(r"\[P([012])\]\s*(.+?)\s*[-—]\s*(.+?)(?:\n|\Z)", re.IGNORECASE)
_LEGACY_RISKS = re.compile(r"residual risks?[:\s]*([\s\S]*?)(?=open questions?|\Z)", re.IGNORECASE)
_LEGACY_QUESTIONS = re.compile(r"open questions?[:\s]*([\s\S]*?)\Z", re.IGNORECASE)
_BULLET = re.compile(r"^[-*]\s*(.+)$", re.MULTILINE)


def _bullets(section: str) -> tuple[str, ...]:
    return tuple(m.strip() for m in _BULLET.findall(section))


def parse_legacy_review(raw_text: str) -> StructuredResult:
    """Regex extraction of ``[P0] Title - file`` lines and bullet sections."""
    findings = tuple(
        Finding(severity=f"P{m.group(1)}", title=m.group(2).strip(), file=m.group(3).strip())  # type: ignore[arg-type]
        for m in _LEGACY_FINDING.finditer(raw_text)
    )
    risks_match = _LEGACY_RISKS.search(raw_text)
    questions_match = _LEGACY_QUESTIONS.search(raw_text)
    return StructuredResult(
        items=findings,
        residual_risks=_bullets(risks_match.group(1)) if risks_match else (),
        open_questions=_bullets(questions_match.group(1)) if questions_match else (),
        raw_text=raw_text,
    )


# ---------------------------------------------------------------------------
# Worker output
# ---------------------------------------------------------------------------


def parse_review(raw_text: str) -> StructuredResult:
    extraction = extract(raw_text)
    if isinstance(extraction, Unparsed):
        return parse_legacy_review(extraction.raw_text)
    payload = extraction.payload
    return StructuredResult(
        items=tuple(normalize_finding(f) for f in _dicts(payload.get("findings"))),
        residual_risks=_str_list(payload.get("residual_risks")),
        open_questions=_str_list(payload.get("open_questions")),
        raw_text=raw_text,
    )


def parse_plan(raw_text: str) -> StructuredResult:
    extraction = extract(raw_text)
    if isinstance(extraction, Unparsed):
        return StructuredResult(raw_text=extraction.raw_text)
    payload = extraction.payload
    summary = payload.get("summary")
    return StructuredResult(
        items=tuple(normalize_step(s) for s in _dicts(payload.get("steps"))),
        residual_risks=_str_list(payload.get("risks")),
        open_questions=_str_list(payload.get("open_questions")),
        summary=summary if isinstance(summary, str) else "",
        raw_text=raw_text,
    )


def parse_output(raw_text: str, mode: DebateMode) -> StructuredResult:
    if mode == "plan":
        return parse_plan(raw_text)
    return parse_review(raw_text)


# ---------------------------------------------------------------------------
# Critique votes
# ---------------------------------------------------------------------------


def parse_critique_votes(
    raw_text: str,
    *,
    reviewer: str,
    target: str,
    target_items: tuple[Item, ...],
    mode: DebateMode,
) -> tuple[CritiqueVote, ...]:
    """Votes one reviewer cast on one target's items; empty when unreadable."""
    extraction = extract(raw_text)
    if isinstance(extraction, Unparsed):
        return ()
    if mode == "plan":
        return _plan_critique_votes(extraction.payload, reviewer, target)
    return _review_critique_votes(extraction.payload, reviewer, target, target_items)


def _review_critique_votes(
    payload: dict[str, Any],
    reviewer: str,
    target: str,
    target_items: tuple[Item, ...],
) -> tuple[CritiqueVote, ...]:
    votes: list[CritiqueVote] = []
    for key, kind in (("correct_points", "agree"), ("incorrect_points", "disagree")):
        points = payload.get(key)
        if not isinstance(points, list):
            continue
        for point in points:
            text = str(point)
            lowered = text.lower()
            for item in target_items:
                if item.title.lower()[:20] in lowered:
                    votes.append(CritiqueVote(
                        reviewer=reviewer,
                        target=target,
                        item_title=item.title,
                        vote=kind,  # type: ignore[arg-type]
                        reason=text,
                    ))
                    break
    return tuple(votes)


def _plan_critique_votes(payload: dict[str, Any], reviewer: str, target: str) -> tuple[CritiqueVote, ...]:
    votes: list[CritiqueVote] = []
    for review in _dicts(payload.get("step_reviews")):
        title = str(review.get("step_title") or "").strip()
        if not title:
            continue
        raw_vote = review.get("vote")
        vote = raw_vote if raw_vote in ("disagree", "modify") else "agree"
        votes.append(CritiqueVote(
            reviewer=reviewer,
            target=target,
            item_title=title,
            vote=vote,
            phase=_phase(review.get("phase")),
            reason=str(review["reason"]) if review.get("reason") else None,
            suggestion=str(review["suggestion"]) if review.get("suggestion") else None,
        ))
    return tuple(votes)


# ---------------------------------------------------------------------------
# Composition and validation
# ---------------------------------------------------------------------------


def parse_composition(raw_text: str, *, composer: str, mode: DebateMode) -> ComposedResult:
    extraction = extract(raw_text)
    if isinstance(extraction, Unparsed):
        return ComposedResult(composer=composer, raw_text=raw_text)
    payload = extraction.payload
    reasons: dict[str, str] = {}
    eliminated: list[Item] = []

    if mode == "plan":
        proposed: tuple[Item, ...] = tuple(normalize_step(s) for s in _dicts(payload.get("proposed_steps")))
        for e in _dicts(payload.get("eliminated_steps")):
            title = str(e.get("title") or "")
            reason = str(e.get("reason") or "No reason provided")
            reasons[title] = reason
            eliminated.append(PlanStep(phase=0, title=title, description=str(e.get("reason") or "")))
        risks = _str_list(payload.get("risks"))
    else:
        proposed = tuple(normalize_finding(f) for f in _dicts(payload.get("proposed_findings")))
        for e in _dicts(payload.get("eliminated_findings")):
            key = str(e.get("id") or e.get("title") or "")
            reason = str(e.get("reason") or "No reason provided")
            reasons[key] = reason
            eliminated.append(Finding(
                severity="P2",
                title=str(e.get("title") or key),
                detail=str(e.get("reason") or ""),
            ))
        risks = _str_list(payload.get("residual_risks"))

    summary = payload.get("summary")
    return ComposedResult(
        composer=composer,
        proposed=proposed,
        eliminated=tuple(eliminated),
        elimination_reasons=reasons,
        residual_risks=risks,
        open_questions=_str_list(payload.get("open_questions")),
        summary=summary if isinstance(summary, str) else "",
        raw_text=raw_text,
    )


def item_id(mode: DebateMode, index: int) -> str:
    return f"step_{index}" if mode == "plan" else f"finding_{index}"


def parse_validation_votes(
    raw_text: str,
    *,
    voter: str,
    item_count: int,
    mode: DebateMode,
) -> tuple[ValidationVote, ...] | None:
    """Votes from one validator, or ``None`` when no JSON object was found."""
    extraction = extract(raw_text)
    if isinstance(extraction, Unparsed):
        return None
    prefix = "step" if mode == "plan" else "finding"
    pattern = re.compile(rf"{prefix}_(\d+)")
    votes: list[ValidationVote] = []
    for v in _dicts(extraction.payload.get("votes")):
        vote_id = str(v.get("id") or "")
        m = pattern.search(vote_id)
        if not m:
            continue
        index = int(m.group(1))
        if index >= item_count:
            continue
        votes.append(ValidationVote(
            item_id=item_id(mode, index),
            item_index=index,
            voter=voter,
            vote="reject" if v.get("vote") == "reject" else "approve",
            reason=str(v["reason"]) if v.get("reason") else None,
        ))
    return tuple(votes)

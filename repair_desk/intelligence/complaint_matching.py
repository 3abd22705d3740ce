"""Shop-history heuristics for free-text complaints.

Both helpers rank a capped window of recent work-order lines for the shop
by naive substring and word-overlap scoring; there is no index and no model.
"""

import math
import re
from collections import Counter
from typing import Final

from sqlalchemy import select
from sqlalchemy.orm import Session

from repair_desk.db.models import WorkOrderLine

LABOR_HISTORY_LIMIT: Final[int] = 150
PROBLEM_HISTORY_LIMIT: Final[int] = 250
MIN_LABOR_SCORE: Final[float] = 0.15
MAX_LABOR_MATCHES: Final[int] = 8
SUBSTRING_HIT_WEIGHT: Final[float] = 0.7
OVERLAP_WORDS_FOR_FULL_CREDIT: Final[int] = 6
PARTIAL_WORD_HIT_SCORE: Final[float] = 0.35
MAX_PROBLEM_HITS: Final[int] = 50
MAX_PROBLEM_SUGGESTIONS: Final[int] = 5
PROBLEM_WHY: Final[str] = "Based on similar past repairs at this shop."

_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: str | None) -> str:
    return _WHITESPACE.sub(" ", (value or "").lower()).strip()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_labor_match(query: str, candidate: str) -> float:
    """Score a normalized candidate complaint against a normalized query."""
    if not query or not candidate:
        return 0.0

    hit = candidate in query or query in candidate
    query_words = query.split(" ")
    shared = [word for word in candidate.split(" ") if word in query_words]
    overlap = min(1.0, len(shared) / OVERLAP_WORDS_FOR_FULL_CREDIT)
    return (SUBSTRING_HIT_WEIGHT if hit else 0.0) + overlap


def estimate_labor_hours(complaint: str, history: list[tuple[str | None, float | None]]) -> dict:
    """Weighted labor estimate from (complaint, labor_time) history rows."""
    query = normalize_text(complaint)

    scored: list[tuple[float, float]] = []
    for past_complaint, labor in history:
        if labor is None:
            continue
        score = score_labor_match(query, normalize_text(past_complaint))
        if score > MIN_LABOR_SCORE:
            scored.append((score, float(labor)))

    scored.sort(key=lambda item: item[0], reverse=True)
    scored = scored[:MAX_LABOR_MATCHES]

    if not scored:
        return {"labor_hours": None, "confidence": 0, "source": "none"}

    weight_sum = 0.0
    weighted_labor = 0.0
    for score, labor in scored:
        weight = _clamp(score, 0.1, 1.0)
        weight_sum += weight
        weighted_labor += weight * labor

    # round-half-up to one decimal
    labor_hours = math.floor(weighted_labor / weight_sum * 10 + 0.5) / 10
    confidence = _clamp(scored[0][0], 0.2, 0.85)
    return {"labor_hours": labor_hours, "confidence": confidence, "source": "shop_history"}


def rank_common_problems(
    complaint: str,
    history: list[tuple[str | None, str | None, str | None]],
) -> list[dict]:
    """Top repair titles for a complaint from (complaint, cause, correction) rows."""
    query = normalize_text(complaint)
    query_words = [word for word in query.split(" ") if word]

    titles: list[str] = []
    for past_complaint, cause, correction in history:
        candidate = normalize_text(past_complaint)
        if query and query in candidate:
            score = 1.0
        elif any(word in candidate for word in query_words):
            score = PARTIAL_WORD_HIT_SCORE
        else:
            score = 0.0

        title = (cause if cause is not None else correction if correction is not None else past_complaint) or ""
        title = title.strip()
        if score > 0 and title:
            titles.append(title)

    counts = Counter(titles[:MAX_PROBLEM_HITS])
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:MAX_PROBLEM_SUGGESTIONS]

    suggestions = []
    for idx, (title, count) in enumerate(ranked):
        base = _clamp(count / 10, 0.25, 0.8)
        suggestions.append(
            {
                "title": title,
                "why": PROBLEM_WHY,
                "confidence": _clamp(base - idx * 0.05, 0.2, 0.85),
            }
        )
    return suggestions


def similar_labor_for_shop(db: Session, complaint: str, *, shop_id: int) -> dict:
    rows = db.execute(
        select(WorkOrderLine.complaint, WorkOrderLine.labor_time)
        .where(WorkOrderLine.shop_id == shop_id)
        .where(WorkOrderLine.labor_time.is_not(None))
        .order_by(WorkOrderLine.created_at.desc(), WorkOrderLine.id.desc())
        .limit(LABOR_HISTORY_LIMIT)
    ).all()
    return estimate_labor_hours(complaint, [(row[0], row[1]) for row in rows])


def common_problems_for_shop(db: Session, complaint: str, *, shop_id: int) -> list[dict]:
    rows = db.execute(
        select(WorkOrderLine.complaint, WorkOrderLine.cause, WorkOrderLine.correction)
        .where(WorkOrderLine.shop_id == shop_id)
        .order_by(WorkOrderLine.created_at.desc(), WorkOrderLine.id.desc())
        .limit(PROBLEM_HISTORY_LIMIT)
    ).all()
    return rank_common_problems(complaint, [(row[0], row[1], row[2]) for row in rows])

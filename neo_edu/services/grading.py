"""
Answer scoring for exam questions.

Three question types are supported:

* ``multiple-choice`` -- exact, case-sensitive match against the key; full
  points or nothing.
* ``true-false`` -- four Đ/S statements encoded as a four character string.
  Each position is compared with the key and the number of correct positions
  maps onto a tier of the question's points (see ``TRUE_FALSE_TIERS``).
* ``short-answer`` -- numeric answer typed with digits, comma (decimal
  separator), minus and spaces, at most ten characters. Compared to the key
  after trimming surrounding whitespace.

Anything malformed (wrong type, unknown question type, characters outside the
allowed set) scores zero for that question; grading never raises.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Protocol

from neo_edu.models.orm import QuestionType

# correct statements out of 4 -> share of the question's points
TRUE_FALSE_TIERS = (0.0, 0.1, 0.25, 0.5, 1.0)
TRUE_FALSE_PARTS = 4
TRUE_SYMBOLS = frozenset({"Đ", "D", "1", "T"})

SHORT_ANSWER_MAX_LENGTH = 10
SHORT_ANSWER_PATTERN = re.compile(r"^[0-9,\- ]+$")


class GradableQuestion(Protocol):
    id: Any
    question_type: str
    correct_answer: str
    points: int


@dataclass
class GradeOutcome:
    earned_points: float
    total_points: int
    score: int
    passed: bool
    awarded: Dict[str, float] = field(default_factory=dict)


def _truth(symbol: str) -> bool:
    # any symbol that does not mean true means false
    return symbol.upper() in TRUE_SYMBOLS


def count_true_false_matches(key: str, answer: str) -> int:
    """Number of positions (of the first four) where the answer agrees with the key.

    Positions past the end of the answer were left unanswered and never match.
    """
    matches = 0
    for i, expected in enumerate(key[:TRUE_FALSE_PARTS]):
        if i >= len(answer):
            break
        if _truth(answer[i]) == _truth(expected):
            matches += 1
    return matches


def true_false_points(key: str, answer: str, points: int) -> float:
    return points * TRUE_FALSE_TIERS[count_true_false_matches(key, answer)]


def normalize_short_answer(raw: str) -> str | None:
    """Trimmed answer, or None when it could not have come from the numeric input."""
    value = raw.strip()
    if not value or len(value) > SHORT_ANSWER_MAX_LENGTH:
        return None
    if not SHORT_ANSWER_PATTERN.match(value):
        return None
    return value


def grade_answer(question: GradableQuestion, raw: Any) -> float:
    if not isinstance(raw, str) or raw == "":
        return 0.0

    qtype = question.question_type
    if qtype == QuestionType.MULTIPLE_CHOICE.value:
        return float(question.points) if raw == question.correct_answer else 0.0
    if qtype == QuestionType.TRUE_FALSE.value:
        return true_false_points(question.correct_answer, raw, question.points)
    if qtype == QuestionType.SHORT_ANSWER.value:
        normalized = normalize_short_answer(raw)
        if normalized is not None and normalized == question.correct_answer.strip():
            return float(question.points)
        return 0.0
    return 0.0


def score_percent(earned: float, total: float) -> int:
    """Integer percentage, halves rounded up. Zero when there is nothing to score."""
    if total <= 0:
        return 0
    pct = math.floor(earned / total * 100 + 0.5)
    return max(0, min(100, pct))


def grade_exam(questions: Iterable[GradableQuestion], answers: Mapping[str, Any], passing_score: int) -> GradeOutcome:
    earned = 0.0
    total = 0
    awarded: Dict[str, float] = {}
    for q in questions:
        total += q.points
        pts = grade_answer(q, answers.get(str(q.id)))
        awarded[str(q.id)] = pts
        earned += pts
    score = score_percent(earned, total)
    return GradeOutcome(earned_points=earned, total_points=total, score=score, passed=score >= passing_score, awarded=awarded)

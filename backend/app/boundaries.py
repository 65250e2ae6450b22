"""Grade boundary parsing, interpolation and rescaling.

Teachers usually type a handful of boundaries ("Grade 9: 36-40", "Grade 4:
16-20"); the essay configuration needs every grade on the scale. Numeric
scales are filled in by linear interpolation between the nearest supplied
grades. Letter scales (A*, A, B...) are returned as supplied, highest first.
"""

import math
import re
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

Grade = Union[int, str]
ParsedBoundary = Tuple[Grade, int, Optional[int]]

_BOUNDARY_RE = re.compile(
    r"^\s*(?:grade\s+)?([A-Za-z0-9]+[*+]?)\s*:\s*(\d+)(?:\s*[-–]\s*(\d+))?",
    re.IGNORECASE,
)
_SPLIT_RE = re.compile(r"[\n;,]+")
_RANGE_RE = re.compile(r"^\s*(\d+)\s*[-–]\s*(\d+)\s*$")

# Numeric scales run 1..9; grade 10 is the notional "full marks" step.
SCALE_CEILING = 10


class GradeBoundary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grade: Grade
    min_marks: int = Field(alias="minMarks")
    max_marks: Optional[int] = Field(default=None, alias="maxMarks")
    interpolated: bool = False

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def js_round(value: float) -> int:
    """Half-up rounding, so 2.5 -> 3 rather than Python's 2."""
    return int(math.floor(value + 0.5))


def _grade_token(value: Any) -> Optional[Grade]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    token = str(value).strip()
    if not token:
        return None
    return int(token) if token.isdigit() else token


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Mark is not a finite number: {value!r}")
    return int(number)


def _as_number(value: Any) -> Optional[float]:
    """Float for a model-reported mark, or None when it is not a usable number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _parse_text(text: str) -> Iterable[ParsedBoundary]:
    for chunk in _SPLIT_RE.split(text):
        m = _BOUNDARY_RE.match(chunk)
        if not m:
            continue
        grade = _grade_token(m.group(1))
        high = int(m.group(3)) if m.group(3) else None
        yield grade, int(m.group(2)), high


def _parse_items(items: Iterable[Any]) -> Iterable[ParsedBoundary]:
    for item in items:
        if isinstance(item, str):
            yield from _parse_text(item)
            continue
        try:
            if isinstance(item, dict):
                grade = _grade_token(item.get("grade"))
                low = _as_int(item.get("minMarks", item.get("min_marks")))
                high = _as_int(item.get("maxMarks", item.get("max_marks")))
            else:
                grade, low, *rest = item
                grade = _grade_token(grade)
                low = _as_int(low)
                high = _as_int(rest[0]) if rest else None
        except (TypeError, ValueError):
            continue
        if grade is None or low is None:
            continue
        yield grade, low, high


def parse_boundaries(raw: Union[str, Sequence[Any], None]) -> List[ParsedBoundary]:
    """Parse free text or a list of mappings into (grade, min, max) tuples.

    Entries that do not parse are dropped. The first entry for a grade wins.
    """
    if not raw:
        return []
    entries = _parse_text(raw) if isinstance(raw, str) else _parse_items(raw)
    seen = set()
    parsed = []
    for grade, low, high in entries:
        if grade in seen:
            continue
        seen.add(grade)
        parsed.append((grade, low, high))
    return parsed


def parse_grade_range(text: Optional[str]) -> Optional[Tuple[int, int]]:
    """'9-1' or '1-9' -> (1, 9)."""
    if not text:
        return None
    m = _RANGE_RE.match(str(text))
    if not m:
        return None
    a, b = int(m.group(1)), int(m.group(2))
    return min(a, b), max(a, b)


def _between(grade: int, upper: ParsedBoundary, lower: ParsedBoundary) -> GradeBoundary:
    upper_grade, upper_min, _ = upper
    lower_grade, lower_min, _ = lower
    per_grade = (upper_min - lower_min) / (upper_grade - lower_grade)
    low = js_round(upper_min - (upper_grade - grade) * per_grade)
    return GradeBoundary(
        grade=grade,
        min_marks=low,
        max_marks=low + js_round(per_grade) - 1,
        interpolated=True,
    )


def _below(grade: int, lowest: ParsedBoundary) -> GradeBoundary:
    lowest_grade, lowest_min, _ = lowest
    per_grade = math.floor(lowest_min / lowest_grade) if lowest_grade > 0 else 0
    low = max(0, lowest_min - (lowest_grade - grade) * per_grade)
    return GradeBoundary(
        grade=grade,
        min_marks=low,
        max_marks=max(low, low + per_grade - 1),
        interpolated=True,
    )


def _above(grade: int, highest: ParsedBoundary, total_marks: int) -> GradeBoundary:
    highest_grade, highest_min, _ = highest
    per_grade = math.floor((total_marks - highest_min) / (SCALE_CEILING - highest_grade))
    low = min(total_marks, highest_min + (grade - highest_grade) * per_grade)
    return GradeBoundary(
        grade=grade,
        min_marks=low,
        max_marks=min(total_marks, max(low, low + per_grade - 1)),
        interpolated=True,
    )


def interpolate_boundaries(
    raw: Union[str, Sequence[Any], None],
    total_marks: Optional[int] = None,
    grade_range: Optional[Tuple[int, int]] = None,
) -> Optional[List[GradeBoundary]]:
    """Complete a partial boundary table.

    Returns None when nothing parses. ``grade_range`` widens a numeric table
    beyond the observed grades; grades above the highest supplied one are
    only produced when ``total_marks`` is known.
    """
    parsed = parse_boundaries(raw)
    if not parsed:
        return None

    if not all(isinstance(grade, int) for grade, _, _ in parsed):
        table = [GradeBoundary(grade=g, min_marks=lo, max_marks=hi) for g, lo, hi in parsed]
        return sorted(table, key=lambda b: b.min_marks, reverse=True)

    known = {grade: (grade, lo, hi) for grade, lo, hi in parsed}
    lowest = known[min(known)]
    highest = known[max(known)]
    top, bottom = highest[0], lowest[0]
    if grade_range:
        bottom = min(bottom, grade_range[0])
        top = max(top, grade_range[1])

    table: List[GradeBoundary] = []
    for grade in range(top, bottom - 1, -1):
        if grade in known:
            _, lo, hi = known[grade]
            table.append(GradeBoundary(grade=grade, min_marks=lo, max_marks=hi))
        elif grade > highest[0]:
            if total_marks and highest[0] < SCALE_CEILING:
                table.append(_above(grade, highest, int(total_marks)))
        elif grade < lowest[0]:
            table.append(_below(grade, lowest))
        else:
            upper = known[min(g for g in known if g > grade)]
            lower = known[max(g for g in known if g < grade)]
            table.append(_between(grade, upper, lower))
    return table


def scale_boundaries(
    boundaries: List[dict],
    original_max: Optional[float],
    target_max: float,
) -> List[dict]:
    """Rescale a boundary table from ``original_max`` marks to ``target_max``.

    Returns the input unchanged when ``original_max`` is missing, zero or not
    a number. Entries that are not mappings are dropped; marks that are not
    numbers scale to None and keep their original value.
    """
    original = _as_number(original_max)
    if not original:
        return boundaries
    scale = float(target_max) / original
    scaled = []
    for b in boundaries:
        if not isinstance(b, dict):
            continue
        low = b.get("minMarks")
        high = b.get("maxMarks")
        low_value = _as_number(low)
        high_value = _as_number(high)
        scaled.append(
            {
                "grade": b.get("grade"),
                "minMarks": js_round(low_value * scale) if low_value is not None else None,
                "maxMarks": js_round(high_value * scale) if high_value is not None else None,
                "originalMin": low,
                "originalMax": high,
            }
        )
    return scaled


def format_table(table: Sequence[GradeBoundary]) -> str:
    lines = []
    for b in table:
        high = b.max_marks if b.max_marks is not None else "?"
        suffix = " (interpolated)" if b.interpolated else ""
        lines.append(f"- Grade {b.grade}: {b.min_marks}-{high} marks{suffix}")
    return "\n".join(lines)

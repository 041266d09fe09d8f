# tutor_dashboard/stats.py
"""授業記録からグラフ用の統計ビューモデルを組み立てる.

I/O なしの純関数。同じ記録集合からは常に同じ結果になるので,
描画のたびに再計算してよい。
"""

from __future__ import annotations
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .common import parse_date
from .config import WRITING_STEPS
from .typing_result import (
    AdvancedTyping, BasicTyping, ThemeLevel, decode_typing_result, level_value,
)

STEP_PATTERN = re.compile(r"STEP\s*([1-3])", re.IGNORECASE)


@dataclass(frozen=True)
class TypingPoint:
    date: str
    label: str
    grade: str
    kind: str  # "basic" | "advanced"
    char_count: Optional[int] = None
    accuracy: Optional[float] = None
    accuracy_text: str = ""
    value: int = 0
    themes: Tuple[ThemeLevel, ...] = ()


@dataclass(frozen=True)
class ThemePoint:
    date: str
    label: str
    level: str
    value: int


@dataclass
class StudentStatistics:
    total_records: int = 0
    week_records: int = 0
    month_records: int = 0
    three_month_records: int = 0
    typing_progress: List[TypingPoint] = field(default_factory=list)
    basic_by_grade: Dict[str, List[TypingPoint]] = field(default_factory=dict)
    theme_progress: Dict[str, Dict[str, List[ThemePoint]]] = field(default_factory=dict)
    writing_steps: Dict[str, int] = field(default_factory=dict)
    unique_grades: List[str] = field(default_factory=list)
    latest_records: List[Dict[str, Any]] = field(default_factory=list)


def _typing_of(record: Dict[str, Any]):
    if "typing" in record:
        return record["typing"]
    return decode_typing_result(record.get("typing_result"))


def _sort_key(record: Dict[str, Any]):
    d = parse_date(record.get("date"))
    return (d.isoformat() if d else "", str(record.get("id", "")))


def _label(d: Optional[date]) -> str:
    return d.strftime("%m/%d") if d else ""


def writing_step_of(record: Dict[str, Any]) -> Optional[str]:
    """書き取りSTEP. 構造化フィールド(1〜3)を優先し, なければ本文の「STEPn」を拾う."""
    step = str(record.get("writing_step") or "").strip()
    if step in WRITING_STEPS:
        return step
    match = STEP_PATTERN.search(str(record.get("writing_result") or ""))
    return match.group(1) if match else None


def typing_point(record: Dict[str, Any]) -> Optional[TypingPoint]:
    result = _typing_of(record)
    d = parse_date(record.get("date"))
    ds = d.isoformat() if d else ""
    if isinstance(result, BasicTyping):
        return TypingPoint(
            date=ds, label=_label(d), grade=result.grade, kind="basic",
            char_count=result.char_count, accuracy=result.accuracy,
            accuracy_text=result.accuracy_text,
        )
    if isinstance(result, AdvancedTyping):
        return TypingPoint(
            date=ds, label=_label(d), grade=result.grade, kind="advanced",
            value=result.average_level, themes=result.themes,
        )
    return None


def compute_statistics(records: List[Dict[str, Any]], today: date) -> StudentStatistics:
    ordered = sorted(records, key=_sort_key)

    dates = [parse_date(r.get("date")) for r in records]
    stats = StudentStatistics(
        total_records=len(records),
        week_records=sum(1 for d in dates if d and d >= today - timedelta(days=7)),
        month_records=sum(1 for d in dates if d and d >= today - timedelta(days=30)),
        three_month_records=sum(1 for d in dates if d and d >= today - timedelta(days=90)),
    )

    grades: "OrderedDict[str, None]" = OrderedDict()
    for record in ordered:
        point = typing_point(record)
        if point is None:
            continue
        stats.typing_progress.append(point)
        grades.setdefault(point.grade, None)
        if point.kind == "basic":
            stats.basic_by_grade.setdefault(point.grade, []).append(point)
            continue
        per_theme = stats.theme_progress.setdefault(point.grade, {})
        for t in point.themes:
            if t.theme and t.level:
                per_theme.setdefault(t.theme, []).append(
                    ThemePoint(date=point.date, label=point.label, level=t.level, value=level_value(t.level))
                )

    for record in ordered:
        step = writing_step_of(record)
        if step:
            key = f"step{step}"
            stats.writing_steps[key] = stats.writing_steps.get(key, 0) + 1

    stats.unique_grades = list(grades)
    stats.latest_records = list(reversed(ordered[-5:]))
    return stats


def dashboard_summary(students: List[Dict[str, Any]], records: List[Dict[str, Any]], today: date) -> Dict[str, Any]:
    """ダッシュボードのカード用集計. 週は日曜始まり."""
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    dates = [parse_date(r.get("date")) for r in records]
    ordered = sorted(records, key=_sort_key, reverse=True)
    latest = parse_date(ordered[0].get("date")) if ordered else None
    return {
        "student_count": len(students),
        "today_records": sum(1 for d in dates if d == today),
        "week_records": sum(1 for d in dates if d and d >= week_start),
        "latest_date": latest.strftime("%m/%d") if latest else "-",
        "recent": ordered[:5],
    }

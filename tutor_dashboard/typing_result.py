# tutor_dashboard/typing_result.py
"""タイピング結果フィールドのデコード / エンコード / 表示整形.

保存形式は文字列のまま (旧形式の自由記述 or JSON)。
ストアの読み出し時に一度だけ `decode_typing_result` で
BasicTyping / AdvancedTyping / LegacyTyping のいずれか (または None) に変換する。
"""

from __future__ import annotations
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import BASIC_GRADES, LEVEL_VALUES, NO_RECORD


@dataclass(frozen=True)
class ThemeLevel:
    theme: str
    level: str


@dataclass(frozen=True)
class BasicTyping:
    grade: str
    char_count_text: str = ""
    accuracy_text: str = ""

    @property
    def char_count(self) -> Optional[int]:
        return parse_char_count(self.char_count_text)

    @property
    def accuracy(self) -> Optional[float]:
        return parse_accuracy(self.accuracy_text)


@dataclass(frozen=True)
class AdvancedTyping:
    grade: str
    themes: Tuple[ThemeLevel, ...] = field(default_factory=tuple)

    @property
    def average_level(self) -> int:
        return average_level(self.themes)


@dataclass(frozen=True)
class LegacyTyping:
    text: str


TypingResult = Union[BasicTyping, AdvancedTyping, LegacyTyping]


def is_basic_grade(grade: Optional[str]) -> bool:
    return grade in BASIC_GRADES


def level_value(level: Optional[str]) -> int:
    return LEVEL_VALUES.get((level or "").strip(), 0)


def average_level(themes) -> int:
    """既知レベルの平均 (四捨五入). 該当なしは 0."""
    values = [level_value(t.level) for t in themes]
    values = [v for v in values if v > 0]
    if not values:
        return 0
    return int(math.floor(sum(values) / len(values) + 0.5))


def parse_char_count(text: Any) -> Optional[int]:
    digits = re.sub(r"[^\d]", "", str(text or ""))
    return int(digits) if digits else None


def parse_accuracy(text: Any) -> Optional[float]:
    cleaned = re.sub(r"[^\d.]", "", str(text or ""))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def decode_typing_result(raw: Any) -> Optional[TypingResult]:
    """保存文字列を解釈する. 例外は投げない.

    - 空 → None
    - JSON オブジェクト + grade → Basic / Advanced
    - grade のない JSON オブジェクト, 壊れた JSON (深すぎる入れ子を含む) → None
    - JSON でない文字列 → LegacyTyping
    """
    if isinstance(raw, (BasicTyping, AdvancedTyping, LegacyTyping)):
        return raw
    text = _text(raw)
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except RecursionError:
        return None
    except ValueError:
        if text.startswith(("{", "[")):
            return None
        return LegacyTyping(text)

    if not isinstance(parsed, dict):
        if isinstance(parsed, list):
            return None
        return LegacyTyping(text)

    grade = _text(parsed.get("grade"))
    if not grade:
        return None
    data = parsed.get("data")
    if not isinstance(data, dict):
        data = {}

    if is_basic_grade(grade):
        basic = data.get("basicData")
        if not isinstance(basic, dict):
            basic = {}
        return BasicTyping(grade, _text(basic.get("charCount")), _text(basic.get("accuracy")))

    themes: List[ThemeLevel] = []
    advanced = data.get("advancedData")
    if isinstance(advanced, list):
        for item in advanced:
            if not isinstance(item, dict):
                continue
            themes.append(ThemeLevel(_text(item.get("theme")), _text(item.get("level") or item.get("evaluation"))))
    return AdvancedTyping(grade, tuple(themes))


def encode_typing_result(grade: str, char_count: str = "", accuracy: str = "",
                         levels: Optional[List[Dict[str, str]]] = None) -> str:
    """フォーム入力を保存用 JSON 文字列に. grade 未選択は空文字."""
    grade = _text(grade)
    if not grade:
        return ""
    data: Dict[str, Any] = {
        "basicData": {"charCount": "", "accuracy": ""},
        "advancedData": [],
    }
    if is_basic_grade(grade):
        data["basicData"] = {"charCount": _text(char_count), "accuracy": _text(accuracy)}
    else:
        data["advancedData"] = [
            {"theme": _text(item.get("theme")), "level": _text(item.get("level"))}
            for item in (levels or [])
        ]
    return json.dumps({"grade": grade, "data": data}, ensure_ascii=False)


def format_typing_result(result: Optional[TypingResult]) -> str:
    """一覧表示用の一行表現."""
    if result is None:
        return NO_RECORD
    if isinstance(result, LegacyTyping):
        return result.text
    if isinstance(result, BasicTyping):
        cc = result.char_count_text
        if cc and not cc.endswith("文字"):
            cc = f"{cc}文字"
        sep = ", " if cc and result.accuracy_text else ""
        return f"{result.grade}: {cc}{sep}{result.accuracy_text}"
    shown = [f"{t.theme or '?'}: {t.level or '?'}" for t in result.themes if t.theme or t.level]
    return f"{result.grade}: {', '.join(shown) if shown else NO_RECORD}"

# tutor_dashboard/evaluation_sheet.py
"""授業評価シート: レイアウト組み立て → HTML 断片 / PNG 画像.

同じ入力 (記録, 前回のタイピング結果, 生成日) からは常に同じ出力になる。
Google Drive へのアップロードは任意の副経路で, 失敗しても画像生成は成功させる。
"""

from __future__ import annotations
import html
import io
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import streamlit as st
from PIL import Image, ImageDraw, ImageFont

from .common import parse_date, today_jst
from .config import NO_RECORD, SCHOOL_NAME, SHEET_LOCAL_FONT, SHEET_MIN_HEIGHT, SHEET_WIDTH
from .typing_result import (
    AdvancedTyping, BasicTyping, LegacyTyping, TypingResult, decode_typing_result,
)

logger = logging.getLogger(__name__)

SHEET_TITLE = "授業評価シート"


@dataclass(frozen=True)
class TypingBlock:
    kind: str  # "single" | "comparison"
    current: Tuple[str, ...]
    previous: Tuple[str, ...] = ()
    changes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SheetLayout:
    student_name: str
    date_text: str
    instructor: str
    class_range: str
    typing: TypingBlock
    writing: str
    comment: str
    next_class_range: str
    footer: str
    title: str = SHEET_TITLE
    school: str = SCHOOL_NAME


@dataclass
class SheetExport:
    filename: str
    png: bytes
    upload: Optional[Dict[str, Any]] = None
    warning: Optional[str] = None


def _typing_of(value: Any) -> Optional[TypingResult]:
    if isinstance(value, dict):
        if "typing" in value:
            return value["typing"]
        return decode_typing_result(value.get("typing_result"))
    return decode_typing_result(value)


def typing_lines(result: Optional[TypingResult]) -> Tuple[str, ...]:
    if result is None:
        return (NO_RECORD,)
    if isinstance(result, LegacyTyping):
        return (result.text,)
    if isinstance(result, BasicTyping):
        lines = [result.grade]
        if result.char_count_text:
            cc = result.char_count_text
            lines.append(f"入力文字数: {cc if cc.endswith('文字') else cc + '文字'}")
        if result.accuracy_text:
            lines.append(f"正タイプ率: {result.accuracy_text}")
        if len(lines) == 1:
            lines.append(NO_RECORD)
        return tuple(lines)
    lines = [result.grade]
    for i, t in enumerate(result.themes, start=1):
        if t.theme or t.level:
            lines.append(f"テーマ{i}: {t.theme or '?'} - {t.level or '?'}")
    if len(lines) == 1:
        lines.append(NO_RECORD)
    return tuple(lines)


def _signed(value: float, unit: str = "") -> str:
    text = f"{value:+.1f}" if isinstance(value, float) and not value.is_integer() else f"{int(value):+d}"
    return f"{text}{unit}"


def _changes(previous: TypingResult, current: TypingResult) -> Tuple[str, ...]:
    out: List[str] = []
    if isinstance(previous, BasicTyping) and isinstance(current, BasicTyping):
        if previous.char_count is not None and current.char_count is not None:
            out.append(f"入力文字数: {_signed(float(current.char_count - previous.char_count), '文字')}")
        if previous.accuracy is not None and current.accuracy is not None:
            out.append(f"正タイプ率: {_signed(current.accuracy - previous.accuracy, '%')}")
    elif isinstance(previous, AdvancedTyping) and isinstance(current, AdvancedTyping):
        before = {t.theme: t.level for t in previous.themes if t.theme}
        for t in current.themes:
            if t.theme and t.level and before.get(t.theme):
                out.append(f"{t.theme}: {before[t.theme]} → {t.level}")
    return tuple(out)


def build_typing_block(current: Optional[TypingResult], previous: Optional[TypingResult] = None) -> TypingBlock:
    """前回と今回の級が同じなら比較表示, それ以外は今回のみ."""
    graded = (BasicTyping, AdvancedTyping)
    if isinstance(current, graded) and isinstance(previous, graded) and current.grade == previous.grade:
        return TypingBlock(
            kind="comparison",
            current=typing_lines(current),
            previous=typing_lines(previous),
            changes=_changes(previous, current),
        )
    return TypingBlock(kind="single", current=typing_lines(current))


def _date_text(value: Any) -> str:
    d = parse_date(value)
    return d.strftime("%Y年%m月%d日") if d else NO_RECORD


def build_sheet(record: Dict[str, Any], previous_typing: Any = None,
                generated_on: Optional[date] = None) -> SheetLayout:
    """record: 授業記録 dict. previous_typing: 前回記録 dict / 保存文字列 / デコード済み値."""
    generated_on = generated_on or today_jst()
    previous = _typing_of(previous_typing) if previous_typing is not None else None
    return SheetLayout(
        student_name=str(record.get("student_name") or NO_RECORD),
        date_text=_date_text(record.get("date")),
        instructor=str(record.get("instructor") or ""),
        class_range=str(record.get("class_range") or NO_RECORD),
        typing=build_typing_block(_typing_of(record), previous),
        writing=str(record.get("writing_result") or NO_RECORD),
        comment=str(record.get("comment") or ""),
        next_class_range=str(record.get("next_class_range") or ""),
        footer=f"生成日時: {generated_on.strftime('%Y年%m月%d日')}",
    )


def previous_record(records: List[Dict[str, Any]], record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """同じ生徒の, record より前の直近記録."""
    def key(r):
        d = parse_date(r.get("date"))
        created = r.get("created_at")
        return (d.isoformat() if d else "", created.timestamp() if isinstance(created, datetime) else 0.0)

    target = key(record)
    candidates = [
        r for r in records
        if r.get("student_id") == record.get("student_id") and r.get("id") != record.get("id") and key(r) < target
    ]
    return max(candidates, key=key) if candidates else None


def sheet_filename(record: Dict[str, Any]) -> str:
    name = str(record.get("student_name") or "student").replace("/", "_").replace("\\", "_").strip()
    d = parse_date(record.get("date"))
    return f"evaluation_{name}_{d.strftime('%Y%m%d') if d else 'undated'}.png"


# -----------------------------
# HTML
# -----------------------------

def _e(text: str) -> str:
    return html.escape(text).replace("\n", "<br>")


def _lines_html(lines) -> str:
    return "<br>".join(_e(line) for line in lines)


def render_html(layout: SheetLayout) -> str:
    parts = [
        f'<div class="evaluation-sheet" style="width:{SHEET_WIDTH}px;">',
        f"<h1>{_e(layout.title)}</h1><p>{_e(layout.school)}</p>",
        f'<div class="info"><span>生徒名: {_e(layout.student_name)}</span>'
        f"<span>実施日: {_e(layout.date_text)}</span></div>",
    ]
    if layout.instructor:
        parts.append(f'<div class="info"><span>担当者: {_e(layout.instructor)}</span></div>')
    parts.append(f"<h3>授業内容</h3><div>授業範囲: {_e(layout.class_range)}</div>")
    parts.append("<h3>学習成果</h3>")
    if layout.typing.kind == "comparison":
        parts.append(
            '<div class="typing comparison">'
            f'<div class="previous"><b>前回</b><br>{_lines_html(layout.typing.previous)}</div>'
            f'<div class="current"><b>今回</b><br>{_lines_html(layout.typing.current)}</div>'
            "</div>"
        )
        if layout.typing.changes:
            parts.append(f'<div class="changes">{_lines_html(layout.typing.changes)}</div>')
    else:
        parts.append(f'<div class="typing single"><b>タイピング結果</b><br>{_lines_html(layout.typing.current)}</div>')
    parts.append(f'<div class="writing"><b>書き取り練習結果</b><br>{_e(layout.writing)}</div>')
    if layout.comment:
        parts.append(f"<h3>指導コメント</h3><div>{_e(layout.comment)}</div>")
    if layout.next_class_range:
        parts.append(f"<h3>次回の授業予定</h3><div>{_e(layout.next_class_range)}</div>")
    parts.append(f'<p class="footer">{_e(layout.footer)}</p></div>')
    return "".join(parts)


# -----------------------------
# PNG (Pillow)
# -----------------------------

PAD = 30
INK = "#000000"
MUTED = "#666666"
FRAME = "#cccccc"
SECTION_COLORS = {"授業内容": "#e3f2fd", "学習成果": "#e3f2fd", "指導コメント": "#e8f5e8", "次回の授業予定": "#fff3e0"}
SECTION_BARS = {"授業内容": "#1976d2", "学習成果": "#1976d2", "指導コメント": "#4caf50", "次回の授業予定": "#ff9800"}


def sheet_font_path() -> Optional[str]:
    """日本語フォントの場所. 環境変数 → secrets → カレントの font.ttf の順. なければ None."""
    path = os.environ.get("SHEET_FONT_PATH")
    if not path:
        try:
            path = st.secrets.get("SHEET_FONT_PATH")
        except FileNotFoundError:
            path = None
    if path:
        return str(path)
    if os.path.exists(SHEET_LOCAL_FONT):
        return SHEET_LOCAL_FONT
    return None


def _load_font(size: int, path: Optional[str]):
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            logger.warning("font not loadable: %s", path)
    return ImageFont.load_default(size=size)


def _wrap(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> List[str]:
    out: List[str] = []
    for para in text.split("\n"):
        line = ""
        for ch in para:
            if line and draw.textlength(line + ch, font=font) > max_width:
                out.append(line)
                line = ch
            else:
                line += ch
        out.append(line)
    return out


class _SheetPainter:
    def __init__(self, draw: ImageDraw.ImageDraw, font_path: Optional[str]):
        self.draw = draw
        path = font_path or sheet_font_path()
        self.fonts = {s: _load_font(s, path) for s in (14, 16, 18, 20, 22, 36)}
        self.y = PAD

    def text_block(self, x: int, y: int, width: int, lines, size: int = 16, fill: str = INK) -> int:
        font = self.fonts[size]
        step = int(size * 1.6)
        for line in lines:
            for part in _wrap(self.draw, line, font, width):
                self.draw.text((x, y), part, fill=fill, font=font)
                y += step
        return y

    def boxed(self, x: int, width: int, heading: Optional[str], lines, size: int = 16, y: Optional[int] = None) -> int:
        top = self.y if y is None else y
        inner = top + 18
        if heading:
            inner = self.text_block(x + 18, inner, width - 36, [heading], size=18) + 4
        bottom = self.text_block(x + 18, inner, width - 36, lines, size=size) + 12
        self.draw.rounded_rectangle([x, top, x + width, bottom], radius=8, outline=FRAME, width=2)
        return bottom

    def section(self, title: str) -> None:
        x0, x1 = PAD, SHEET_WIDTH - PAD
        self.draw.rectangle([x0, self.y, x1, self.y + 46], fill=SECTION_COLORS.get(title, "#eeeeee"))
        self.draw.rectangle([x0, self.y, x0 + 6, self.y + 46], fill=SECTION_BARS.get(title, "#333333"))
        self.draw.text((x0 + 18, self.y + 10), title, fill="#333333", font=self.fonts[22])
        self.y += 64

    def paint(self, layout: SheetLayout) -> int:
        d, width = self.draw, SHEET_WIDTH - 2 * PAD
        title_font = self.fonts[36]
        d.text(((SHEET_WIDTH - d.textlength(layout.title, font=title_font)) / 2, self.y), layout.title, fill="#333333", font=title_font)
        self.y += 56
        d.text(((SHEET_WIDTH - d.textlength(layout.school, font=self.fonts[20])) / 2, self.y), layout.school, fill=MUTED, font=self.fonts[20])
        self.y += 40
        d.line([PAD, self.y, SHEET_WIDTH - PAD, self.y], fill="#333333", width=3)
        self.y += 30

        half = (width - 25) // 2
        left = self.boxed(PAD, half, None, [f"生徒名: {layout.student_name}"], size=22)
        right = self.boxed(PAD + half + 25, half, None, [f"実施日: {layout.date_text}"], size=20)
        self.y = max(left, right) + 30
        if layout.instructor:
            self.y = self.boxed(PAD, width, None, [f"担当者: {layout.instructor}"], size=20) + 30

        self.section("授業内容")
        self.y = self.boxed(PAD, width, None, [f"授業範囲: {layout.class_range}"], size=20) + 30

        self.section("学習成果")
        if layout.typing.kind == "comparison":
            top = self.y
            left = self.boxed(PAD, half, "タイピング結果(前回)", layout.typing.previous, y=top)
            right = self.boxed(PAD + half + 25, half, "タイピング結果(今回)", layout.typing.current, y=top)
            self.y = max(left, right) + 20
            if layout.typing.changes:
                self.y = self.boxed(PAD, width, "前回からの変化", layout.typing.changes) + 20
        else:
            self.y = self.boxed(PAD, width, "タイピング結果", layout.typing.current) + 20
        self.y = self.boxed(PAD, width, "書き取り練習結果", [layout.writing]) + 30

        if layout.comment:
            self.section("指導コメント")
            self.y = self.boxed(PAD, width, None, [layout.comment]) + 30
        if layout.next_class_range:
            self.section("次回の授業予定")
            self.y = self.boxed(PAD, width, None, [layout.next_class_range], size=18) + 30

        d.line([PAD, self.y, SHEET_WIDTH - PAD, self.y], fill=FRAME, width=2)
        self.y += 15
        footer_font = self.fonts[14]
        d.text(((SHEET_WIDTH - d.textlength(layout.footer, font=footer_font)) / 2, self.y), layout.footer, fill=MUTED, font=footer_font)
        return self.y + 30 + PAD


def render_png(layout: SheetLayout, font_path: Optional[str] = None) -> bytes:
    """固定幅 1200px. 高さは内容に合わせ, 最低 1650px."""
    # 1回目: 高さの計測
    scratch = Image.new("RGB", (SHEET_WIDTH, 1), "white")
    height = max(_SheetPainter(ImageDraw.Draw(scratch), font_path).paint(layout), SHEET_MIN_HEIGHT)

    img = Image.new("RGB", (SHEET_WIDTH, height), "white")
    draw = ImageDraw.Draw(img)
    _SheetPainter(draw, font_path).paint(layout)
    draw.rectangle([0, 0, SHEET_WIDTH - 1, height - 1], outline="#333333", width=2)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def export_evaluation_sheet(record: Dict[str, Any], previous_typing: Any = None, drive=None,
                            folder_path: Optional[str] = None,
                            generated_on: Optional[date] = None) -> SheetExport:
    """画像を生成し, drive があればアップロードも試みる. アップロード失敗は warning で返す."""
    layout = build_sheet(record, previous_typing, generated_on=generated_on)
    export = SheetExport(filename=sheet_filename(record), png=render_png(layout))
    if drive is None:
        return export
    try:
        export.upload = drive.upload_evaluation_sheet(export.png, export.filename, folder_path)
    except Exception as e:
        logger.warning("evaluation sheet upload failed for %s: %s", export.filename, e)
        export.warning = f"Google Drive へのアップロードに失敗しました: {e}"
    return export

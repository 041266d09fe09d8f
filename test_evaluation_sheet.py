import io
from datetime import date, datetime

from PIL import Image

from tutor_dashboard import evaluation_sheet as sheet_mod
from tutor_dashboard.errors import DriveError
from tutor_dashboard.evaluation_sheet import (
    build_sheet, export_evaluation_sheet, previous_record, render_html, render_png, sheet_filename,
    sheet_font_path,
)
from tutor_dashboard.typing_result import encode_typing_result

GENERATED = date(2024, 6, 15)


def _record(**overrides):
    record = {
        "id": "r2",
        "student_id": "s1",
        "student_name": "田中太郎",
        "date": "2024-06-14",
        "class_range": "ループ <基本>",
        "instructor": "鈴木",
        "typing_result": encode_typing_result("10級", "120", "95"),
        "writing_result": "STEP2 ひらがな",
        "comment": "よくできました",
        "next_class_range": "条件分岐",
    }
    record.update(overrides)
    return record


class FakeDrive:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def ensure_folder(self, path):
        self.calls.append(("ensure_folder", path))
        return "folder-1"

    def upload(self, data, name, folder_id=None, mime_type="image/png"):
        self.calls.append(("upload", name, folder_id))
        if self.fail:
            raise DriveError("quota exceeded")
        return {"file_id": "f1", "file_name": name, "web_view_link": "https://drive.google.com/file/d/f1/view"}

    def upload_evaluation_sheet(self, png, filename, folder_path=None):
        folder_id = self.ensure_folder(folder_path) if folder_path else None
        return self.upload(png, filename, folder_id)


def test_same_grade_previous_gives_comparison():
    previous = encode_typing_result("10級", "100", "90")
    layout = build_sheet(_record(), previous, generated_on=GENERATED)
    assert layout.typing.kind == "comparison"
    assert layout.typing.previous == ("10級", "入力文字数: 100文字", "正タイプ率: 90")
    assert layout.typing.changes == ("入力文字数: +20文字", "正タイプ率: +5%")


def test_different_grade_or_no_previous_gives_single():
    previous = encode_typing_result("11級", "100", "90")
    assert build_sheet(_record(), previous, generated_on=GENERATED).typing.kind == "single"
    layout = build_sheet(_record(), None, generated_on=GENERATED)
    assert layout.typing.kind == "single"
    assert layout.typing.current == ("10級", "入力文字数: 120文字", "正タイプ率: 95")


def test_advanced_comparison_lists_theme_changes():
    current = encode_typing_result("9級", levels=[{"theme": "しりとり2文字", "level": "B+"}])
    previous = encode_typing_result("9級", levels=[{"theme": "しりとり2文字", "level": "C"}])
    layout = build_sheet(_record(typing_result=current), previous, generated_on=GENERATED)
    assert layout.typing.kind == "comparison"
    assert layout.typing.changes == ("しりとり2文字: C → B+",)


def test_missing_fields_show_no_record():
    layout = build_sheet({"id": "x"}, generated_on=GENERATED)
    assert layout.student_name == "記録なし"
    assert layout.class_range == "記録なし"
    assert layout.typing.current == ("記録なし",)
    assert layout.footer == "生成日時: 2024年06月15日"


def test_render_html_escapes_text():
    html = render_html(build_sheet(_record(), generated_on=GENERATED))
    assert "ループ &lt;基本&gt;" in html
    assert "<基本>" not in html
    assert "田中太郎" in html


def test_render_png_is_deterministic_and_sized():
    layout = build_sheet(_record(), encode_typing_result("10級", "100", "90"), generated_on=GENERATED)
    png = render_png(layout)
    assert png.startswith(b"\x89PNG")
    assert png == render_png(layout)
    img = Image.open(io.BytesIO(png))
    assert img.width == 1200
    assert img.height >= 1650


def test_sheet_filename():
    assert sheet_filename(_record()) == "evaluation_田中太郎_20240614.png"
    assert sheet_filename({"student_name": "a/b"}) == "evaluation_a_b_undated.png"


def test_previous_record_picks_latest_earlier_record_of_same_student():
    records = [
        _record(id="r0", date="2024-05-01"),
        _record(id="r1", date="2024-06-01"),
        _record(id="r3", date="2024-06-20"),
        _record(id="o1", student_id="s2", date="2024-06-10"),
    ]
    assert previous_record(records, _record())["id"] == "r1"
    assert previous_record(records, _record(date="2024-04-01")) is None


def test_previous_record_same_day_uses_created_at():
    a = _record(id="a", created_at=datetime(2024, 6, 14, 10, 0))
    b = _record(id="b", created_at=datetime(2024, 6, 14, 12, 0))
    assert previous_record([a, b], b)["id"] == "a"


def test_export_without_drive():
    export = export_evaluation_sheet(_record(), generated_on=GENERATED)
    assert export.filename == "evaluation_田中太郎_20240614.png"
    assert export.png.startswith(b"\x89PNG")
    assert export.upload is None
    assert export.warning is None


def test_export_uploads_to_student_folder():
    drive = FakeDrive()
    export = export_evaluation_sheet(_record(), drive=drive, folder_path="/生徒フォルダ/田中太郎", generated_on=GENERATED)
    assert drive.calls == [
        ("ensure_folder", "/生徒フォルダ/田中太郎"),
        ("upload", "evaluation_田中太郎_20240614.png", "folder-1"),
    ]
    assert export.upload["file_id"] == "f1"
    assert export.warning is None


def test_export_upload_failure_still_returns_image():
    export = export_evaluation_sheet(_record(), drive=FakeDrive(fail=True), folder_path="/生徒フォルダ/田中太郎",
                                     generated_on=GENERATED)
    assert export.png.startswith(b"\x89PNG")
    assert export.upload is None
    assert "quota exceeded" in export.warning


def test_sheet_font_path_lookup_order(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SHEET_FONT_PATH", raising=False)
    monkeypatch.setattr(sheet_mod.st, "secrets", {})
    assert sheet_font_path() is None

    (tmp_path / "font.ttf").write_bytes(b"")
    assert sheet_font_path() == "font.ttf"

    monkeypatch.setattr(sheet_mod.st, "secrets", {"SHEET_FONT_PATH": "/fonts/secret.otf"})
    assert sheet_font_path() == "/fonts/secret.otf"

    monkeypatch.setenv("SHEET_FONT_PATH", "/fonts/env.otf")
    assert sheet_font_path() == "/fonts/env.otf"


def test_unreadable_font_falls_back_to_default(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "font.ttf").write_bytes(b"not a font")
    monkeypatch.delenv("SHEET_FONT_PATH", raising=False)
    monkeypatch.setattr(sheet_mod.st, "secrets", {})
    png = render_png(build_sheet(_record(), generated_on=GENERATED))
    assert Image.open(io.BytesIO(png)).width == 1200

from datetime import date

from tutor_dashboard.stats import compute_statistics, dashboard_summary, typing_point, writing_step_of
from tutor_dashboard.typing_result import encode_typing_result

TODAY = date(2024, 6, 15)  # 土曜日


def _record(rid, d, typing="", writing="", step=""):
    return {
        "id": rid, "date": d, "student_name": "田中", "typing_result": typing,
        "writing_result": writing, "writing_step": step,
    }


def _records():
    return [
        _record("r1", "2024-03-01", encode_typing_result("10級", "100", "90"), "ひらがな STEP1"),
        _record("r2", "2024-05-20", encode_typing_result("10級", "120", "95"), "step 2 ok"),
        _record("r3", "2024-06-10", encode_typing_result("9級", levels=[
            {"theme": "しりとり2文字", "level": "B+"}, {"theme": "しりとり3文字", "level": "B-"},
        ]), "STEP3", step="2"),
        _record("r4", "2024-06-14", "{broken"),
        _record("r5", "2024-06-15", "自由記述の結果"),
    ]


def test_window_counts():
    stats = compute_statistics(_records(), TODAY)
    assert stats.total_records == 5
    assert stats.week_records == 3
    assert stats.month_records == 4
    assert stats.three_month_records == 4


def test_typing_progress_skips_malformed_and_legacy():
    stats = compute_statistics(_records(), TODAY)
    assert [(p.date, p.kind) for p in stats.typing_progress] == [
        ("2024-03-01", "basic"), ("2024-05-20", "basic"), ("2024-06-10", "advanced"),
    ]
    assert [p.char_count for p in stats.basic_by_grade["10級"]] == [100, 120]
    assert stats.typing_progress[-1].value == 11  # (12 + 10) / 2
    assert stats.unique_grades == ["10級", "9級"]


def test_deeply_nested_typing_payload_is_skipped():
    records = _records() + [_record("r6", "2024-06-12", '{"grade":"9級","data":' + "[" * 100000)]
    stats = compute_statistics(records, TODAY)
    assert stats.total_records == 6
    assert [p.date for p in stats.typing_progress] == ["2024-03-01", "2024-05-20", "2024-06-10"]


def test_theme_progress_uses_level_ranks():
    stats = compute_statistics(_records(), TODAY)
    themes = stats.theme_progress["9級"]
    assert [(p.level, p.value) for p in themes["しりとり2文字"]] == [("B+", 12)]
    assert [(p.level, p.value) for p in themes["しりとり3文字"]] == [("B-", 10)]


def test_writing_steps_prefer_structured_field():
    stats = compute_statistics(_records(), TODAY)
    assert stats.writing_steps == {"step1": 1, "step2": 2}
    assert writing_step_of({"writing_result": "STEP 3 まで"}) == "3"
    assert writing_step_of({"writing_result": "途中"}) is None


def test_result_independent_of_input_order():
    forward = compute_statistics(_records(), TODAY)
    backward = compute_statistics(list(reversed(_records())), TODAY)
    assert forward == backward
    assert [r["id"] for r in forward.latest_records] == ["r5", "r4", "r3", "r2", "r1"]


def test_empty_records():
    stats = compute_statistics([], TODAY)
    assert stats.total_records == 0
    assert stats.typing_progress == []
    assert stats.writing_steps == {}
    assert stats.latest_records == []


def test_typing_point_none_without_result():
    assert typing_point(_record("x", "2024-01-01")) is None


def test_dashboard_summary_week_starts_sunday():
    students = [{"id": "s1"}, {"id": "s2"}]
    summary = dashboard_summary(students, _records(), TODAY)
    assert summary["student_count"] == 2
    assert summary["today_records"] == 1
    # 6/9(日)〜
    assert summary["week_records"] == 3
    assert summary["latest_date"] == "06/15"
    assert [r["id"] for r in summary["recent"]] == ["r5", "r4", "r3", "r2", "r1"]


def test_dashboard_summary_empty():
    summary = dashboard_summary([], [], TODAY)
    assert summary["latest_date"] == "-"
    assert summary["recent"] == []

import pytest

from tutor_dashboard import dialogs
from tutor_dashboard.dialogs import NOT_FOUND_MESSAGE, memo_author_options, sheet_state_key
from tutor_dashboard.errors import NotFoundError, ValidationError


class Rerun(Exception):
    pass


@pytest.fixture
def ui(monkeypatch):
    shown = {"toast": [], "error": []}
    monkeypatch.setattr(dialogs.st, "toast", lambda msg, **kw: shown["toast"].append(msg))
    monkeypatch.setattr(dialogs.st, "error", lambda msg, **kw: shown["error"].append(msg))

    def rerun(**kw):
        raise Rerun()

    monkeypatch.setattr(dialogs.st, "rerun", rerun)
    return shown


def test_delete_of_existing_entity_reports_deleted(ui):
    with pytest.raises(Rerun):
        dialogs._run_delete(lambda: True)
    assert ui["toast"] == ["削除しました。"]


def test_delete_of_vanished_entity_reloads_with_not_found(ui):
    with pytest.raises(Rerun):
        dialogs._run_delete(lambda: False)
    assert ui["toast"] == [NOT_FOUND_MESSAGE]


def test_not_found_on_save_reloads_list(ui):
    with pytest.raises(Rerun):
        dialogs._failed(NotFoundError("生徒が見つかりません"))
    assert ui["toast"] == [NOT_FOUND_MESSAGE]
    assert ui["error"] == []


def test_validation_error_stays_in_dialog(ui):
    def action():
        raise ValidationError("必須項目です")

    dialogs._run_delete(action)
    assert ui["error"] == ["削除失敗: 必須項目です"]
    assert ui["toast"] == []


def test_memo_author_options():
    mentors = [
        {"last_name": "鈴木", "first_name": "一郎"},
        {"last_name": "佐藤", "first_name": "花子"},
        {"last_name": "鈴木", "first_name": "一郎"},
        {"last_name": "", "first_name": ""},
    ]
    assert memo_author_options(mentors, "鈴木 一郎") == ["鈴木 一郎", "佐藤 花子"]
    assert memo_author_options(mentors, "管理者") == ["管理者", "鈴木 一郎", "佐藤 花子"]
    assert memo_author_options([], "管理者") == ["管理者"]


def test_sheet_state_key_changes_when_record_is_edited():
    record = {"id": "r1", "updated_at": "2024-06-14T10:00:00"}
    edited = {**record, "updated_at": "2024-06-14T11:00:00"}
    assert sheet_state_key(record) != sheet_state_key(edited)
    assert sheet_state_key(record) == sheet_state_key(dict(record))
    assert sheet_state_key({"id": "r1"}) == "sheet_r1_"

# tutor_dashboard/dialogs.py
# -----------------------------
# UI: ダイアログ (追加/編集フォーム)
# -----------------------------

from __future__ import annotations
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import streamlit as st

from . import store
from .auth import Session
from .common import parse_date, today_jst
from .config import (
    BASIC_GRADES, COURSES, DRIVE_FOLDER_ROOT, MENTOR_STATUSES, TYPING_GRADES,
    TYPING_LEVELS, TYPING_THEMES, WRITING_STEPS,
)
from .errors import DashboardError, NotFoundError
from .evaluation_sheet import build_sheet, export_evaluation_sheet, previous_record, render_html
from .typing_result import AdvancedTyping, BasicTyping, encode_typing_result


def _done(message: str = "保存しました。") -> None:
    st.toast(message)
    st.rerun()


NOT_FOUND_MESSAGE = "対象が見つかりません。一覧を更新します。"


def _failed(e: DashboardError, prefix: str = "保存失敗") -> None:
    # 既に消えている対象は一覧ごと読み直す
    if isinstance(e, NotFoundError):
        _done(NOT_FOUND_MESSAGE)
    else:
        st.error(f"{prefix}: {e}")


def _run_delete(action: Callable[[], Any]) -> None:
    try:
        found = action()
    except DashboardError as e:
        _failed(e, "削除失敗")
        return
    _done(NOT_FOUND_MESSAGE if found is False else "削除しました。")


def _index(options: List[Any], value: Any, default: int = 0) -> int:
    return options.index(value) if value in options else default


@st.dialog("削除の確認")
def dialog_confirm_delete(label: str, action: Callable[[], Any]):
    st.warning(f"{label} を削除します。この操作は取り消せません。")
    c1, c2 = st.columns(2)
    with c1:
        if st.button("削除", type="primary"):
            _run_delete(action)
    with c2:
        if st.button("キャンセル"):
            st.rerun()


@st.dialog("生徒 追加/編集")
def dialog_student(db, default: Optional[Dict[str, Any]] = None):
    default = default or {}
    name = st.text_input("生徒名", value=default.get("name", ""))
    age = st.number_input("年齢", min_value=1, max_value=99, step=1, value=int(default.get("age") or 10))
    course = st.selectbox("コース", COURSES, index=_index(COURSES, default.get("course")))
    folder = st.text_input(
        "Drive フォルダ", value=default.get("drive_folder", ""),
        placeholder=f"{DRIVE_FOLDER_ROOT}/<生徒名> (空欄なら自動)",
    )
    if st.button("保存", type="primary"):
        data = {"name": name, "age": int(age), "course": course, "drive_folder": folder}
        try:
            if default.get("id"):
                store.student_update(db, default["id"], data)
            else:
                store.student_create(db, data)
        except DashboardError as e:
            _failed(e)
            return
        _done()


@st.dialog("メンター 追加/編集", width="large")
def dialog_mentor(db, default: Optional[Dict[str, Any]] = None):
    default = default or {}
    c1, c2 = st.columns(2)
    with c1:
        last_name = st.text_input("姓", value=default.get("last_name", ""))
        email = st.text_input("メールアドレス", value=default.get("email", ""))
        emergency = st.text_input("緊急連絡先", value=default.get("emergency_contact", ""))
        statuses = list(MENTOR_STATUSES)
        status = st.selectbox(
            "ステータス", statuses, index=_index(statuses, default.get("status")),
            format_func=lambda s: MENTOR_STATUSES[s],
        )
    with c2:
        first_name = st.text_input("名", value=default.get("first_name", ""))
        phone = st.text_input("電話番号", value=default.get("phone", ""))
        specialty = st.text_input("専門分野", value=default.get("specialty", ""))
        join_date = st.date_input("入社日", value=parse_date(default.get("join_date")) or today_jst())
    if st.button("保存", type="primary"):
        data = {
            "last_name": last_name, "first_name": first_name, "email": email, "phone": phone,
            "emergency_contact": emergency, "specialty": specialty, "status": status,
            "join_date": join_date.isoformat(),
        }
        try:
            if default.get("id"):
                store.mentor_update(db, default["id"], data)
            else:
                store.mentor_create(db, data)
        except DashboardError as e:
            _failed(e)
            return
        _done()


@st.dialog("クラス 追加/編集")
def dialog_class(db, default: Optional[Dict[str, Any]] = None):
    default = default or {}
    name = st.text_input("クラス名", value=default.get("name", ""))
    description = st.text_area("説明", value=default.get("description", ""))
    if st.button("保存", type="primary"):
        try:
            if default.get("id"):
                store.class_update(db, default["id"], {"name": name, "description": description})
            else:
                store.class_create(db, {"name": name, "description": description})
        except DashboardError as e:
            _failed(e)
            return
        _done()


@st.dialog("カリキュラム 追加/編集")
def dialog_curriculum(db, classes: List[Dict[str, Any]], class_id: str, default: Optional[Dict[str, Any]] = None):
    default = default or {}
    ids = [c["id"] for c in classes]
    names = {c["id"]: c.get("name", "") for c in classes}
    target = st.selectbox(
        "クラス", ids, index=_index(ids, default.get("class_id") or class_id),
        format_func=lambda i: names.get(i, i),
    )
    title = st.text_input("タイトル", value=default.get("title", ""))
    description = st.text_area("内容", value=default.get("description", ""))
    if st.button("保存", type="primary"):
        data = {"class_id": target, "title": title, "description": description}
        try:
            if default.get("id"):
                store.curriculum_update(db, default["id"], data)
            else:
                store.curriculum_create(db, data)
        except DashboardError as e:
            _failed(e)
            return
        _done()


# 授業記録

def _append_comment(key: str, text: str) -> None:
    current = st.session_state.get(key, "")
    st.session_state[key] = f"{current}\n{text}" if current else text


def _typing_inputs(key: str, default_typing) -> str:
    """級を選ばせ, 級に応じた入力欄を出して保存用文字列を返す."""
    grades = ["(未入力)"] + TYPING_GRADES
    grade = st.selectbox(
        "タイピング級", grades,
        index=_index(grades, getattr(default_typing, "grade", None)),
        key=f"{key}_grade",
    )
    if grade == "(未入力)":
        return ""
    if grade in BASIC_GRADES:
        basic = default_typing if isinstance(default_typing, BasicTyping) else None
        c1, c2 = st.columns(2)
        with c1:
            chars = st.text_input("文字数", value=basic.char_count_text if basic else "", key=f"{key}_chars")
        with c2:
            accuracy = st.text_input("正確率", value=basic.accuracy_text if basic else "", key=f"{key}_acc")
        return encode_typing_result(grade, char_count=chars, accuracy=accuracy)

    previous: Dict[str, str] = {}
    if isinstance(default_typing, AdvancedTyping) and default_typing.grade == grade:
        previous = {t.theme: t.level for t in default_typing.themes}
    levels = []
    options = ["-"] + TYPING_LEVELS
    for i, theme in enumerate(TYPING_THEMES.get(grade, [])):
        level = st.selectbox(theme, options, index=_index(options, previous.get(theme)), key=f"{key}_lv{i}")
        levels.append({"theme": theme, "level": "" if level == "-" else level})
    return encode_typing_result(grade, levels=levels)


@st.dialog("授業記録 追加/編集", width="large")
def dialog_class_record(db, session: Session, students: List[Dict[str, Any]],
                        default: Optional[Dict[str, Any]] = None):
    default = default or {}
    key = f"rec_{default.get('id', 'new')}"
    ids = [s["id"] for s in students]
    names = {s["id"]: s.get("name", "") for s in students}
    if not ids:
        st.info("生徒が登録されていません。先に生徒を登録してください。")
        return

    c1, c2 = st.columns(2)
    with c1:
        student_id = st.selectbox(
            "生徒", ids, index=_index(ids, default.get("student_id")),
            format_func=lambda i: names.get(i, i), key=f"{key}_student",
        )
    with c2:
        d: date = st.date_input("日付", value=parse_date(default.get("date")) or today_jst(), key=f"{key}_date")

    class_range = st.text_input("授業範囲", value=default.get("class_range", ""), key=f"{key}_range")
    typing_result = _typing_inputs(key, default.get("typing"))

    c1, c2 = st.columns([3, 1])
    with c1:
        writing = st.text_input("書き取り結果", value=default.get("writing_result", ""), key=f"{key}_writing")
    with c2:
        steps = [""] + list(WRITING_STEPS)
        step = st.selectbox(
            "STEP", steps, index=_index(steps, default.get("writing_step")),
            format_func=lambda s: f"STEP{s}" if s else "-", key=f"{key}_step",
        )

    comment_key = f"{key}_comment"
    st.session_state.setdefault(comment_key, default.get("comment", ""))
    templates = store.comment_templates_list(db)
    if templates:
        c1, c2 = st.columns([4, 1])
        with c1:
            picked = st.selectbox(
                "コメントテンプレート", templates,
                format_func=lambda t: f"[{t.get('category')}] {t.get('text')}", key=f"{key}_tpl",
            )
        with c2:
            st.button("挿入", key=f"{key}_tpl_add", on_click=_append_comment, args=(comment_key, picked.get("text", "")))
    comment = st.text_area("コメント", key=comment_key)

    next_range = st.text_input("次回授業範囲", value=default.get("next_class_range", ""), key=f"{key}_next")
    instructor = st.text_input("担当者", value=default.get("instructor") or session.name, key=f"{key}_inst")

    if st.button("保存", type="primary", key=f"{key}_save"):
        data = {
            "student_id": student_id, "date": d.isoformat(), "class_range": class_range,
            "typing_result": typing_result, "writing_result": writing, "writing_step": step,
            "comment": comment, "next_class_range": next_range, "instructor": instructor,
        }
        try:
            if default.get("id"):
                store.class_record_update(db, default["id"], data)
            else:
                store.class_record_create(db, data)
        except DashboardError as e:
            _failed(e)
            return
        st.session_state.pop(comment_key, None)
        _done()


def sheet_state_key(record: Dict[str, Any]) -> str:
    """生成済みシートの保存キー. 記録が更新されたら別キーになる."""
    return f"sheet_{record['id']}_{record.get('updated_at') or ''}"


@st.dialog("授業評価シート", width="large")
def dialog_evaluation_sheet(db, record: Dict[str, Any], drive=None):
    history = store.class_records_list(db, record.get("student_id"))
    prev = previous_record(history, record)
    prev_typing = prev.get("typing") if prev else None
    st.html(render_html(build_sheet(record, prev_typing)))

    upload = False
    if drive is not None:
        upload = st.checkbox("Google Drive にも保存する", value=drive.is_authenticated())

    state_key = sheet_state_key(record)
    if st.button("画像を生成", type="primary"):
        folder = None
        if upload:
            student = store.student_get(db, record.get("student_id"))
            folder = (student or {}).get("drive_folder") or f"{DRIVE_FOLDER_ROOT}/{record.get('student_name', '')}"
        st.session_state[state_key] = export_evaluation_sheet(
            record, prev_typing, drive=drive if upload else None, folder_path=folder,
        )

    export = st.session_state.get(state_key)
    if export is None:
        return
    if export.warning:
        st.warning(export.warning)
    elif export.upload:
        st.success(f"Google Drive に保存しました: [{export.upload['file_name']}]({export.upload['web_view_link']})")
    st.download_button("PNG をダウンロード", export.png, file_name=export.filename, mime="image/png")


def memo_author_options(mentors: List[Dict[str, Any]], current: str) -> List[str]:
    names = [f"{m.get('last_name', '')} {m.get('first_name', '')}".strip() for m in mentors]
    names = list(dict.fromkeys(n for n in names if n))
    if current and current not in names:
        names.insert(0, current)
    return names


def _memo_row(db, m: Dict[str, Any], authors: List[str]) -> None:
    edit_key = f"memo_edit_{m['id']}"
    created = m.get("created_at")
    stamp = created.strftime("%Y/%m/%d %H:%M") if hasattr(created, "strftime") else ""
    st.caption(f"{stamp}  {m.get('author', '')}")
    if not st.session_state.get(edit_key):
        st.write(m.get("content", ""))
        c1, c2 = st.columns(2)
        with c1:
            if st.button("編集", key=f"memo_edit_btn_{m['id']}"):
                st.session_state[edit_key] = True
                st.rerun(scope="fragment")
        with c2:
            if st.button("削除", key=f"memo_del_{m['id']}"):
                if not store.student_memo_delete(db, m["id"]):
                    st.toast(NOT_FOUND_MESSAGE)
                st.rerun(scope="fragment")
        return

    options = authors if m.get("author") in authors else [m.get("author", "")] + authors
    content = st.text_area("内容", value=m.get("content", ""), key=f"memo_text_{m['id']}")
    author = st.selectbox("記入者", options, index=_index(options, m.get("author")), key=f"memo_author_{m['id']}")
    c1, c2 = st.columns(2)
    with c1:
        if st.button("更新", type="primary", key=f"memo_save_{m['id']}"):
            try:
                store.student_memo_update(db, m["id"], {"content": content, "author": author})
            except NotFoundError:
                st.toast(NOT_FOUND_MESSAGE)
            except DashboardError as e:
                st.error(f"保存失敗: {e}")
                return
            else:
                st.toast("メモを更新しました。")
            st.session_state.pop(edit_key, None)
            st.rerun(scope="fragment")
    with c2:
        if st.button("キャンセル", key=f"memo_cancel_{m['id']}"):
            st.session_state.pop(edit_key, None)
            st.rerun(scope="fragment")


@st.dialog("生徒メモ", width="large")
def dialog_memos(db, session: Session, student: Dict[str, Any]):
    st.subheader(student.get("name", ""))
    authors = memo_author_options(store.mentors_list(db), session.name)
    content = st.text_area("新しいメモ")
    author = st.selectbox("記入者", authors, index=_index(authors, session.name))
    if st.button("メモを追加", type="primary"):
        try:
            store.student_memo_create(db, {"student_id": student["id"], "content": content, "author": author})
        except DashboardError as e:
            st.error(f"保存失敗: {e}")
        else:
            st.toast("メモを追加しました。")

    memos = store.student_memos_list(db, student["id"])
    if not memos:
        st.caption("メモはまだありません。")
    for m in memos:
        with st.container(border=True):
            _memo_row(db, m, authors)


@st.dialog("コメントテンプレート 追加/編集")
def dialog_template(db, default: Optional[Dict[str, Any]] = None):
    default = default or {}
    category = st.text_input("カテゴリ", value=default.get("category", ""))
    text = st.text_area("本文", value=default.get("text", ""))
    if st.button("保存", type="primary"):
        try:
            if default.get("id"):
                store.comment_template_update(db, default["id"], {"category": category, "text": text})
            else:
                store.comment_template_create(db, {"category": category, "text": text})
        except DashboardError as e:
            _failed(e)
            return
        _done()

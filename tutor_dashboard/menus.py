# tutor_dashboard/menus.py
# -----------------------------
# UI: メニュー画面
# -----------------------------
# 各画面は Firestore クライアントとログインセッションを引数で受け取る。

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from . import store
from .auth import Session, hash_password
from .charts import statistics_figures
from .common import today_jst
from .config import COURSES, MENTOR_STATUSES
from .dialogs import (
    dialog_class, dialog_class_record, dialog_confirm_delete, dialog_curriculum,
    dialog_evaluation_sheet, dialog_memos, dialog_mentor, dialog_student, dialog_template,
)
from .errors import DashboardError, DriveError
from .evaluation_sheet import sheet_font_path
from .stats import compute_statistics, dashboard_summary, writing_step_of
from .typing_result import format_typing_result

logger = logging.getLogger(__name__)


def _frame(rows: List[Dict[str, Any]], columns: Dict[str, str]) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    for c in columns:
        if c not in df.columns:
            df[c] = None
    return df[list(columns)].rename(columns=columns)


def _records_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    view = [
        {
            "date": r.get("date"),
            "student_name": r.get("student_name"),
            "class_range": r.get("class_range"),
            "typing": format_typing_result(r.get("typing")),
            "writing": r.get("writing_result"),
            "instructor": r.get("instructor"),
        }
        for r in rows
    ]
    return _frame(view, {
        "date": "日付", "student_name": "生徒名", "class_range": "授業範囲",
        "typing": "タイピング", "writing": "書き取り", "instructor": "担当者",
    })


def _read_csv_flex(file) -> pd.DataFrame:
    """UTF-8 優先, 失敗したら CP932 で読み直す."""
    file.seek(0)
    try:
        return pd.read_csv(file)
    except UnicodeDecodeError:
        file.seek(0)
        return pd.read_csv(file, encoding="cp932")


def _import_students_csv(db, session: Session, file) -> None:
    try:
        result = store.students_import_frame(db, _read_csv_flex(file))
    except ValueError as e:
        st.error(f"取込失敗: {e}")
        return
    logger.info("students csv import by %s: %s", session.id, result)
    st.toast(f"登録 {result['created']} 件 / スキップ {result['skipped']} 件")
    st.rerun()


# -----------------------------
# ダッシュボード
# -----------------------------

def menu_dashboard(db, session: Session):
    st.header("ダッシュボード")
    st.caption(f"ようこそ, {session.name} さん")

    students = store.students_list(db)
    records = store.class_records_list(db)
    summary = dashboard_summary(students, records, today_jst())

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("登録生徒数", summary["student_count"])
    c2.metric("今日の授業記録", summary["today_records"])
    c3.metric("今週の授業記録", summary["week_records"])
    c4.metric("最終記録日", summary["latest_date"])

    st.subheader("最近の授業記録")
    if not summary["recent"]:
        st.info("授業記録はまだありません。")
        return
    st.dataframe(_records_frame(summary["recent"]), use_container_width=True, hide_index=True)


# -----------------------------
# 生徒管理
# -----------------------------

def menu_students(db, session: Session):
    st.header("生徒管理")
    c1, c2 = st.columns([2, 1])
    with c1:
        kw = st.text_input("検索 (生徒名・コース)")
    with c2:
        course = st.selectbox("コース", ["すべて"] + COURSES)

    c1, c2 = st.columns(2)
    with c1:
        if st.button("生徒を追加", type="primary"):
            dialog_student(db, {})
    with c2:
        with st.popover("CSV 一括登録"):
            st.caption("ヘッダー: name,age,course[,drive_folder] | UTF-8 推奨 (CP932 も可)")
            file = st.file_uploader("CSV ファイル", type=["csv"], accept_multiple_files=False)
            if st.button("登録", key="stu_csv_import") and file is not None:
                _import_students_csv(db, session, file)

    rows = store.students_list(db, {"keyword": kw, "course": None if course == "すべて" else course})
    if not rows:
        st.info("該当する生徒がいません。")
        return

    st.dataframe(
        _frame(rows, {"name": "生徒名", "age": "年齢", "course": "コース", "drive_folder": "Drive フォルダ"}),
        use_container_width=True, hide_index=True,
    )
    for r in rows:
        c1, c2, c3, c4 = st.columns([3, 1, 1, 1])
        with c1:
            st.write(f"**{r.get('name')}** ({r.get('age')}歳)")
        with c2:
            if st.button("編集", key=f"stu_edit_{r['id']}"):
                dialog_student(db, r)
        with c3:
            if st.button("メモ", key=f"stu_memo_{r['id']}"):
                dialog_memos(db, session, r)
        with c4:
            if st.button("削除", key=f"stu_del_{r['id']}"):
                dialog_confirm_delete(f"生徒「{r.get('name')}」", lambda rid=r["id"]: store.student_delete(db, rid))


# -----------------------------
# 授業記録
# -----------------------------

def menu_class_records(db, session: Session, drive=None):
    st.header("授業記録")
    students = store.students_list(db)
    names = {s["id"]: s.get("name", "") for s in students}
    student_id = st.selectbox(
        "生徒で絞り込み", [""] + list(names),
        format_func=lambda i: names.get(i, "すべての生徒"),
    )

    if st.button("授業記録を追加", type="primary"):
        dialog_class_record(db, session, students, {"student_id": student_id} if student_id else {})

    rows = store.class_records_list(db, student_id or None)
    if not rows:
        st.info("授業記録がありません。")
        return

    for r in rows:
        with st.container(border=True):
            st.markdown(f"**{r.get('date')}  {r.get('student_name')}**  ({r.get('instructor')})")
            st.write(f"授業範囲: {r.get('class_range') or '-'}")
            st.write(f"タイピング: {format_typing_result(r.get('typing'))}")
            step = writing_step_of(r)
            writing = r.get("writing_result") or "-"
            st.write(f"書き取り: {writing}" + (f" (STEP{step})" if step else ""))
            if r.get("comment"):
                st.caption(r["comment"])
            c1, c2, c3 = st.columns(3)
            with c1:
                if st.button("編集", key=f"rec_edit_{r['id']}"):
                    dialog_class_record(db, session, students, r)
            with c2:
                if st.button("評価シート", key=f"rec_sheet_{r['id']}"):
                    dialog_evaluation_sheet(db, r, drive)
            with c3:
                if st.button("削除", key=f"rec_del_{r['id']}"):
                    dialog_confirm_delete(f"{r.get('date')} の授業記録", lambda rid=r["id"]: store.class_record_delete(db, rid))


# -----------------------------
# 統計データ
# -----------------------------

def menu_statistics(db, session: Session):
    st.header("統計データ")
    students = store.students_list(db)
    if not students:
        st.info("生徒が登録されていません。")
        return
    names = {s["id"]: s.get("name", "") for s in students}
    student_id = st.selectbox("生徒", list(names), format_func=lambda i: names[i])

    stats = compute_statistics(store.class_records_list(db, student_id), today_jst())

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("総授業回数", stats.total_records)
    c2.metric("直近1週間", stats.week_records)
    c3.metric("直近1ヶ月", stats.month_records)
    c4.metric("直近3ヶ月", stats.three_month_records)
    if stats.unique_grades:
        st.caption("受験した級: " + ", ".join(stats.unique_grades))

    figures = statistics_figures(stats)
    if not figures:
        st.info("グラフに表示できるデータがありません。")
    for fig in figures:
        st.plotly_chart(fig, use_container_width=True)

    if stats.latest_records:
        st.subheader("最近の授業記録")
        st.dataframe(_records_frame(stats.latest_records), use_container_width=True, hide_index=True)


# -----------------------------
# メンター管理
# -----------------------------

def menu_mentors(db, session: Session):
    st.header("メンター管理")
    c1, c2 = st.columns([2, 1])
    with c1:
        kw = st.text_input("検索 (氏名・メール・専門分野)")
    with c2:
        status = st.selectbox(
            "ステータス", [""] + list(MENTOR_STATUSES),
            format_func=lambda s: MENTOR_STATUSES.get(s, "すべて"),
        )

    if st.button("メンターを追加", type="primary"):
        dialog_mentor(db, {})

    rows = store.mentors_list(db, {"keyword": kw, "status": status})
    if not rows:
        st.info("該当するメンターがいません。")
        return

    for r in rows:
        with st.container(border=True):
            st.subheader(f"{r.get('last_name', '')} {r.get('first_name', '')}")
            st.caption(
                f"{MENTOR_STATUSES.get(r.get('status'), '-')} | {r.get('specialty') or '-'} | "
                f"入社日 {r.get('join_date') or '-'}"
            )
            st.write(f"{r.get('email') or '-'} / {r.get('phone') or '-'}")
            c1, c2 = st.columns(2)
            with c1:
                if st.button("編集", key=f"mentor_edit_{r['id']}"):
                    dialog_mentor(db, r)
            with c2:
                if st.button("削除", key=f"mentor_del_{r['id']}"):
                    dialog_confirm_delete(
                        f"メンター「{r.get('last_name', '')} {r.get('first_name', '')}」",
                        lambda rid=r["id"]: store.mentor_delete(db, rid),
                    )


# -----------------------------
# クラス管理
# -----------------------------

def _moved(ids: List[str], index: int, step: int) -> Optional[List[str]]:
    """index の要素を step (±1) だけ動かした新しい並び. 端なら None."""
    target = index + step
    if target < 0 or target >= len(ids):
        return None
    out = list(ids)
    out[index], out[target] = out[target], out[index]
    return out


def _reorder(action, *args) -> None:
    try:
        action(*args)
    except DashboardError as e:
        st.error(f"並び替え失敗: {e}")
        return
    st.rerun()


def _curricula_section(db, classes: List[Dict[str, Any]], cls: Dict[str, Any]):
    items = store.curricula_list(db, cls["id"])
    if st.button("カリキュラムを追加", key=f"cur_add_{cls['id']}"):
        dialog_curriculum(db, classes, cls["id"], {})
    if not items:
        st.caption("カリキュラムはまだありません。")
        return
    ids = [c["id"] for c in items]
    for i, c in enumerate(items):
        c1, c2, c3, c4, c5 = st.columns([4, 1, 1, 1, 1])
        with c1:
            st.write(f"{c.get('order')}. {c.get('title')}")
            if c.get("description"):
                st.caption(c["description"])
        with c2:
            if st.button("↑", key=f"cur_up_{c['id']}", disabled=i == 0):
                _reorder(store.curricula_reorder, db, cls["id"], _moved(ids, i, -1))
        with c3:
            if st.button("↓", key=f"cur_down_{c['id']}", disabled=i == len(ids) - 1):
                _reorder(store.curricula_reorder, db, cls["id"], _moved(ids, i, 1))
        with c4:
            if st.button("編集", key=f"cur_edit_{c['id']}"):
                dialog_curriculum(db, classes, cls["id"], c)
        with c5:
            if st.button("削除", key=f"cur_del_{c['id']}"):
                dialog_confirm_delete(f"カリキュラム「{c.get('title')}」", lambda cid=c["id"]: store.curriculum_delete(db, cid))


def menu_classes(db, session: Session):
    st.header("クラス管理")
    kw = st.text_input("検索 (クラス名・説明)")
    if st.button("クラスを追加", type="primary"):
        dialog_class(db, {})

    classes = store.classes_list(db)
    shown = store.classes_search(db, kw) if kw else classes
    if not shown:
        st.info("クラスが登録されていません。")
        return

    ids = [c["id"] for c in classes]
    for cls in shown:
        i = ids.index(cls["id"])
        with st.container(border=True):
            c1, c2, c3, c4, c5 = st.columns([4, 1, 1, 1, 1])
            with c1:
                st.subheader(f"{cls.get('order')}. {cls.get('name')}")
                if cls.get("description"):
                    st.caption(cls["description"])
            with c2:
                if st.button("↑", key=f"cls_up_{cls['id']}", disabled=i == 0):
                    _reorder(store.classes_reorder, db, _moved(ids, i, -1))
            with c3:
                if st.button("↓", key=f"cls_down_{cls['id']}", disabled=i == len(ids) - 1):
                    _reorder(store.classes_reorder, db, _moved(ids, i, 1))
            with c4:
                if st.button("編集", key=f"cls_edit_{cls['id']}"):
                    dialog_class(db, cls)
            with c5:
                if st.button("削除", key=f"cls_del_{cls['id']}"):
                    dialog_confirm_delete(
                        f"クラス「{cls.get('name')}」とそのカリキュラム",
                        lambda cid=cls["id"]: store.class_delete(db, cid),
                    )
            with st.expander("カリキュラム"):
                _curricula_section(db, classes, cls)


# -----------------------------
# 設定
# -----------------------------

def _drive_settings(drive):
    st.subheader("Google Drive 連携")
    if drive is None:
        st.caption("未設定です。secrets.toml の [google_drive] にサービスアカウントを設定してください。")
        return
    if drive.is_authenticated():
        st.write("状態: 接続済み")
        if st.button("切断"):
            drive.sign_out()
            st.rerun()
        return
    st.write("状態: 未接続")
    if st.button("接続", type="primary"):
        try:
            drive.authenticate()
        except DriveError as e:
            st.error(f"接続失敗: {e}")
            return
        st.rerun()


def menu_settings(db, session: Session, drive=None):
    st.header("設定")
    st.write(f"ログイン中: {session.name} ({session.role} / {session.login_type})")
    st.write("Firestore 接続: OK")

    _drive_settings(drive)
    if sheet_font_path() is None:
        st.warning("評価シート用の日本語フォントが未設定です。SHEET_FONT_PATH (環境変数または secrets) を設定するか, font.ttf を置いてください。")

    st.subheader("コメントテンプレート")
    if st.button("テンプレートを追加"):
        dialog_template(db, {})
    for t in store.comment_templates_list(db):
        c1, c2, c3 = st.columns([5, 1, 1])
        with c1:
            st.write(f"[{t.get('category')}] {t.get('text')}")
        with c2:
            if st.button("編集", key=f"tpl_edit_{t['id']}"):
                dialog_template(db, t)
        with c3:
            if st.button("削除", key=f"tpl_del_{t['id']}"):
                dialog_confirm_delete("テンプレート", lambda tid=t["id"]: store.comment_template_delete(db, tid))

    st.subheader("初期データ")
    if st.button("デモ生徒を登録"):
        n = store.seed_demo_students(db)
        if n:
            st.success(f"{n} 名のデモ生徒を登録しました。")
        else:
            st.info("既に生徒が登録されているため, 登録しませんでした。")

    st.subheader("CSV テンプレート (生徒一括登録)")
    sample = f"name,age,course\n山田花子,9,{COURSES[0]}\n"
    st.download_button("テンプレートをダウンロード", sample.encode("utf-8"), file_name="students_template.csv", mime="text/csv")

    if session.is_admin:
        with st.expander("パスワードハッシュ生成 (secrets.toml 用)"):
            pw = st.text_input("パスワード", type="password")
            if st.button("生成") and pw:
                st.code(hash_password(pw))

# app.py: 生徒管理システム (Streamlit + Firebase)
# ---------------------------------------------------
# 概要:
# - プログラミング教室の生徒 / メンター / クラス・カリキュラム / 授業記録の管理
# - 授業記録からのタイピング・書き取り統計 (plotly) と授業評価シート (PNG) の生成
# - 評価シートは任意で Google Drive の生徒フォルダへ保存
# - ログインは secrets.toml のローカルユーザー, または Streamlit の外部ログイン
# - Streamlit Cloud + Firestore, st.secrets["FIREBASE_KEY"] を使用
# - 入力/編集はすべて st.dialog, 保存後 st.rerun()

from __future__ import annotations
import logging
from typing import Optional

import streamlit as st

from tutor_dashboard import menus
from tutor_dashboard.auth import (
    ExternalOAuthProvider, current_session, local_provider_from_secrets, login, logout,
)
from tutor_dashboard.common import init_firebase, setup_logging
from tutor_dashboard.config import APP_TITLE
from tutor_dashboard.drive import drive_client_from_secrets
from tutor_dashboard.errors import AuthError

logger = logging.getLogger(__name__)

MENU_ITEMS = [
    "ダッシュボード",
    "生徒管理",
    "授業記録",
    "統計データ",
    "メンター管理",
    "クラス管理",
    "設定",
]


def _external_provider() -> Optional[ExternalOAuthProvider]:
    # [auth] が設定されているときだけ外部ログインを出す
    if "auth" not in st.secrets:
        return None
    return ExternalOAuthProvider(st.secrets.get("external_login_provider"))


def _drive():
    if "drive" not in st.session_state:
        st.session_state["drive"] = drive_client_from_secrets()
    return st.session_state["drive"]


def login_screen(external: Optional[ExternalOAuthProvider]):
    st.title(APP_TITLE)
    st.subheader("ログイン")
    with st.form("login_form"):
        username = st.text_input("ユーザー名")
        password = st.text_input("パスワード", type="password")
        submitted = st.form_submit_button("ログイン", type="primary")
    if submitted:
        try:
            login(local_provider_from_secrets().authenticate(username, password))
        except AuthError as e:
            st.error(str(e))
        else:
            st.rerun()

    if external is not None:
        st.divider()
        st.button("外部アカウントでログイン", on_click=external.start)


# -----------------------------
# メインルーティング
# -----------------------------

def main():
    setup_logging()
    st.set_page_config(page_title=APP_TITLE, layout="wide")

    external = _external_provider()
    session = current_session()
    if session is None and external is not None and external.is_logged_in():
        session = login(external.authenticate())
    if session is None:
        login_screen(external)
        return

    db = init_firebase()
    drive = _drive()

    st.sidebar.title(APP_TITLE)
    st.sidebar.caption(f"{session.name} さん")
    menu = st.sidebar.radio("メニュー", MENU_ITEMS)
    if st.sidebar.button("ログアウト"):
        logout(external)
        st.rerun()

    try:
        if menu == "ダッシュボード":
            menus.menu_dashboard(db, session)
        elif menu == "生徒管理":
            menus.menu_students(db, session)
        elif menu == "授業記録":
            menus.menu_class_records(db, session, drive)
        elif menu == "統計データ":
            menus.menu_statistics(db, session)
        elif menu == "メンター管理":
            menus.menu_mentors(db, session)
        elif menu == "クラス管理":
            menus.menu_classes(db, session)
        elif menu == "設定":
            menus.menu_settings(db, session, drive)
    except Exception as e:
        logger.exception("unexpected error in menu %s", menu)
        st.error(f"予期しないエラーが発生しました: {e}")


if __name__ == "__main__":
    main()

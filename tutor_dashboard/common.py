# tutor_dashboard/common.py: 初期化 / 共通ユーティリティ

from __future__ import annotations
import os
import json
import logging
from typing import Optional
from datetime import datetime, date
from zoneinfo import ZoneInfo

import streamlit as st

from firebase_admin import credentials, firestore as fb_fs_admin, initialize_app

JST = ZoneInfo("Asia/Tokyo")

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@st.cache_resource(show_spinner=False)
def init_firebase():
    """st.secrets["FIREBASE_KEY"] のサービスアカウント JSON で Firebase Admin を初期化し,
    Firestore クライアントを返す.
    """
    try:
        key = st.secrets.get("FIREBASE_KEY")
        if key is None:
            st.error("FIREBASE_KEY が設定されていません。")
            st.stop()
        if isinstance(key, str):
            key_dict = json.loads(key)
        else:
            key_dict = dict(key)

        cred = credentials.Certificate(key_dict)
        app = initialize_app(cred)
        return fb_fs_admin.client(app)
    except Exception as e:
        logger.exception("Firebase initialisation failed")
        st.error(f"Firebase 初期化エラー: {e}")
        raise


def to_jst(dt: Optional[datetime] = None) -> datetime:
    dt = dt or datetime.now(ZoneInfo("UTC"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo("UTC"))
    return dt.astimezone(JST)


def today_jst() -> date:
    return to_jst().date()


def parse_date(value) -> Optional[date]:
    """'YYYY-MM-DD' / ISO 日時 / date / datetime を date に. 解釈できなければ None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_jst(value).date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None

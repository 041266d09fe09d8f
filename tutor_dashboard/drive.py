# tutor_dashboard/drive.py
"""Google Drive 連携(評価シートのアップロード専用の薄いクライアント).

アプリの他の部分は authenticate / is_authenticated / ensure_folder / upload / sign_out
だけに依存する。通信はタイムアウト付きで, GET の 429・5xx はバックオフ再試行する。
"""

from __future__ import annotations
import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
import streamlit as st
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2 import service_account
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DRIVE_SCOPES
from .errors import DriveAuthError, DriveError

logger = logging.getLogger(__name__)

FILES_URL = "https://www.googleapis.com/drive/v3/files"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
FOLDER_MIME = "application/vnd.google-apps.folder"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def retry_policy(retries: int) -> Retry:
    # POST (フォルダ作成・アップロード) は再試行しない
    return Retry(total=retries, backoff_factor=1.0,
                 status_forcelist=(429, 500, 502, 503, 504), allowed_methods=frozenset({"GET"}))


class DriveClient:
    def __init__(self, credentials=None, root_folder_id: Optional[str] = None,
                 timeout: float = 30, retries: int = 3, session=None):
        self.credentials = credentials
        self.root_folder_id = root_folder_id
        self.timeout = timeout
        self.retries = retries
        self._session = session

    # 認証

    def authenticate(self) -> None:
        if self.credentials is None:
            raise DriveAuthError("Google Drive の認証情報が設定されていません")
        try:
            self.credentials.refresh(Request())
        except GoogleAuthError as e:
            raise DriveAuthError(f"認証エラー: {e}") from e
        logger.info("google drive authenticated")

    def is_authenticated(self) -> bool:
        return bool(self.credentials is not None and getattr(self.credentials, "token", None))

    def sign_out(self) -> None:
        token = getattr(self.credentials, "token", None) if self.credentials is not None else None
        if token:
            try:
                requests.post(REVOKE_URL, params={"token": token},
                              headers={"content-type": "application/x-www-form-urlencoded"},
                              timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning("token revoke failed: %s", e)
        self.credentials = None
        self._session = None

    # HTTP

    def _http(self):
        if not self.is_authenticated():
            raise DriveAuthError("Google Drive 認証が必要です")
        if self._session is None:
            session = AuthorizedSession(self.credentials)
            session.mount("https://", HTTPAdapter(max_retries=retry_policy(self.retries)))
            self._session = session
        return self._session

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self._http().request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise DriveError(f"Google Drive 通信エラー: {e}") from e
        if not resp.ok:
            raise DriveError(f"Google Drive API エラー: {resp.status_code} {resp.reason}")
        return resp.json()

    # フォルダ / ファイル

    def create_or_get_folder(self, name: str, parent_id: Optional[str] = None) -> Dict[str, Any]:
        """同名フォルダがあればそれを, なければ作成して返す."""
        q = f"name='{_quote(name)}' and mimeType='{FOLDER_MIME}' and trashed=false"
        if parent_id:
            q += f" and '{_quote(parent_id)}' in parents"
        found = self._request("GET", FILES_URL, params={"q": q, "fields": "files(id, name)"})
        files = found.get("files") or []
        if files:
            return files[0]
        meta: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            meta["parents"] = [parent_id]
        created = self._request("POST", FILES_URL, params={"fields": "id, name"}, json=meta)
        logger.info("created drive folder %s (%s)", name, created.get("id"))
        return created

    def ensure_folder(self, path: str) -> Optional[str]:
        """'/生徒フォルダ/田中太郎' のような階層パスを上から順にたどり, 末端のフォルダIDを返す."""
        parent = self.root_folder_id
        for segment in [s.strip() for s in (path or "").split("/") if s.strip()]:
            parent = self.create_or_get_folder(segment, parent)["id"]
        return parent

    def upload(self, data: bytes, name: str, folder_id: Optional[str] = None,
               mime_type: str = "image/png") -> Dict[str, Any]:
        meta: Dict[str, Any] = {"name": name}
        if folder_id:
            meta["parents"] = [folder_id]
        boundary = uuid.uuid4().hex
        body = b"".join([
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode("utf-8"),
            json.dumps(meta, ensure_ascii=False).encode("utf-8"),
            f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode("utf-8"),
            data,
            f"\r\n--{boundary}--".encode("utf-8"),
        ])
        result = self._request(
            "POST", UPLOAD_URL,
            params={"uploadType": "multipart", "fields": "id, name"},
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        file_id = result.get("id")
        logger.info("uploaded %s to drive (%s)", name, file_id)
        return {
            "file_id": file_id,
            "file_name": result.get("name", name),
            "web_view_link": f"https://drive.google.com/file/d/{file_id}/view",
        }

    def upload_evaluation_sheet(self, png: bytes, filename: str, folder_path: Optional[str] = None) -> Dict[str, Any]:
        folder_id = self.ensure_folder(folder_path) if folder_path else self.root_folder_id
        return self.upload(png, filename, folder_id)


def drive_client_from_secrets() -> Optional[DriveClient]:
    """st.secrets["google_drive"] にサービスアカウントがあればクライアントを作る. 未設定なら None."""
    conf = st.secrets.get("google_drive")
    if not conf:
        return None
    info = conf.get("service_account")
    if not info:
        return None
    if isinstance(info, str):
        info = json.loads(info)
    creds = service_account.Credentials.from_service_account_info(dict(info), scopes=DRIVE_SCOPES)
    return DriveClient(creds, root_folder_id=conf.get("root_folder_id"))

# tutor_dashboard/auth.py
"""ログイン / ログアウトとセッション管理."""

from __future__ import annotations
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import bcrypt
import streamlit as st

from .errors import AuthError

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
ROLES = ("admin", "mentor")


@dataclass(frozen=True)
class Session:
    id: str
    name: str
    role: str
    login_type: str  # "local" | "external"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def hash_password(password: str) -> str:
    """secrets.toml に書く bcrypt ハッシュを作る."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


class AuthProvider:
    login_type = ""

    def authenticate(self, *args, **kwargs) -> Session:
        raise NotImplementedError


class LocalAuthProvider(AuthProvider):
    login_type = "local"

    def __init__(self, users: Iterable[Mapping[str, Any]]):
        self.users: List[Dict[str, Any]] = [dict(u) for u in users]

    def authenticate(self, username: str, password: str) -> Session:
        username = username or ""
        if not username or not password:
            raise AuthError("ユーザー名とパスワードを入力してください")
        user = next((u for u in self.users if u.get("username") == username), None)
        hashed = str((user or {}).get("password_hash") or "")
        ok = False
        if user and hashed:
            try:
                ok = bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
            except ValueError:
                logger.warning("invalid password hash for %s", username)
        if not ok:
            logger.info("local login failed: %s", username)
            raise AuthError("ユーザー名またはパスワードが違います")
        role = user.get("role") if user.get("role") in ROLES else "mentor"
        return Session(
            id=username,
            name=user.get("name") or username,
            role=role,
            login_type=self.login_type,
            email=user.get("email"),
        )


def local_provider_from_secrets() -> LocalAuthProvider:
    auth_conf = st.secrets.get("local_auth") or {}
    return LocalAuthProvider(auth_conf.get("users") or [])


def session_from_userinfo(info: Optional[Mapping[str, Any]]) -> Session:
    """外部 IdP のユーザー情報からセッションを作る. 取得できなければ仮プロフィール."""
    info = info or {}
    uid = info.get("sub") or info.get("email")
    if not uid:
        return Session(id="external-user", name="外部ユーザー", role="mentor", login_type="external")
    return Session(
        id=str(uid),
        name=str(info.get("name") or info.get("email") or "外部ユーザー"),
        role="mentor",
        login_type="external",
        email=info.get("email"),
    )


class ExternalOAuthProvider(AuthProvider):
    """Streamlit 組み込みの OIDC ログイン (st.login / st.user) を包む."""

    login_type = "external"

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider

    def start(self) -> None:
        if self.provider:
            st.login(self.provider)
        else:
            st.login()

    def is_logged_in(self) -> bool:
        return bool(getattr(st.user, "is_logged_in", False))

    def authenticate(self) -> Session:
        if not self.is_logged_in():
            raise AuthError("外部ログインが完了していません")
        try:
            info = st.user.to_dict()
        except Exception as e:
            logger.warning("user info lookup failed: %s", e)
            info = {}
        return session_from_userinfo(info)

    def sign_out(self) -> None:
        if self.is_logged_in():
            st.logout()


# セッション (st.session_state)

def current_session() -> Optional[Session]:
    return st.session_state.get(SESSION_KEY)


def login(session: Session) -> Session:
    st.session_state[SESSION_KEY] = session
    logger.info("login: %s (%s)", session.id, session.login_type)
    return session


def logout(external: Optional[ExternalOAuthProvider] = None) -> None:
    session = st.session_state.pop(SESSION_KEY, None)
    if session is not None:
        logger.info("logout: %s", session.id)
    if session is not None and session.login_type == "external" and external is not None:
        external.sign_out()

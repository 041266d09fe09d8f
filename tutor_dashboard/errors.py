# tutor_dashboard/errors.py


class DashboardError(Exception):
    """アプリ全体の基底例外. UI 側で捕捉して通知に変換する."""


class ValidationError(DashboardError, ValueError):
    pass


class NotFoundError(DashboardError, LookupError):
    pass


class DuplicateNameError(DashboardError, RuntimeError):
    pass


class AuthError(DashboardError):
    pass


class DriveError(DashboardError):
    pass


class DriveAuthError(DriveError):
    pass

"""Who may act on a case's payment."""
from counsel_payments.core.errors import AuthorizationError
from counsel_payments.database.models import Case, UserRole


def ensure_can_pay(case: Case, user_id: str, role: str) -> None:
    """Only the case's client (or an admin) settles or reconciles it."""
    if role == UserRole.ADMIN.value or case.client_id == user_id:
        return
    raise AuthorizationError()


def ensure_can_view(case: Case, user_id: str, role: str) -> None:
    """Both parties of the case and admins can see its payment."""
    if role == UserRole.ADMIN.value or user_id in (case.client_id, case.lawyer_id):
        return
    raise AuthorizationError()

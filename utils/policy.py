from errors import Forbidden
from models import BorrowRecord, Principal


def ensure_active(principal: Principal) -> Principal:
    if not principal.is_active:
        raise Forbidden("Your account has been deactivated. Please contact support.")
    return principal


def ensure_admin(principal: Principal) -> Principal:
    """Single gate for every administrative operation."""
    ensure_active(principal)
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal


def can_manage_record(principal: Principal, record: BorrowRecord) -> bool:
    return record.user_id == principal.id or principal.is_admin

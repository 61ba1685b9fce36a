from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from slotbook.db.session import get_db
from slotbook.core.security import decode_token
from slotbook.models.user import User
from slotbook.services.payment_service import PaymentAuthority, get_payment_authority
from slotbook.services.timezone_service import Clock, SystemClock

bearer = HTTPBearer(auto_error=False)

_system_clock = SystemClock()


def _user_from_token(token: str, db: Session) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(creds.credentials, db)


def get_optional_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User | None:
    """Anonymous availability queries are allowed; a bad token is still rejected."""
    if not creds:
        return None
    return _user_from_token(creds.credentials, db)


def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def get_clock() -> Clock:
    return _system_clock


def get_payments() -> PaymentAuthority:
    return get_payment_authority()


def http_error(e: Exception) -> HTTPException:
    """Map service-layer exceptions onto HTTP statuses. Conflicts and outages have app-level handlers."""
    from slotbook.core.errors import CancellationRefused
    if isinstance(e, (PermissionError, CancellationRefused)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e).strip("'\""))
    return HTTPException(status_code=400, detail=str(e))

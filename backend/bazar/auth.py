from datetime import datetime, timedelta, timezone
from typing import Optional
import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from . import schemas, models, database
from .config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)

NO_PERMISSION_MESSAGE = "You do not have permission to perform this action."

# A capability is granted when the admin holds any permission of its group.
PERMISSION_GROUPS: dict[str, frozenset[str]] = {
    "review_ads": frozenset({"review_ads", "review_items"}),
    "manage_users": frozenset({"manage_users", "manage_site_users", "search_site_users"}),
    "search_ads": frozenset(
        {
            "search_ads",
            "search_archived_ads",
            "search_pending_ads",
            "search_enqueued_ads",
            "search_published_rejected_ads",
        }
    ),
    "manage_reports": frozenset({"manage_reports", "manage_blacklists"}),
}


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    to_encode["type"] = "access"
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    to_encode["type"] = "refresh"
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=30))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def issue_tokens(user_id: str, email: str) -> dict:
    payload = {"sub": str(user_id), "email": email}
    return {
        "access_token": create_access_token(
            payload, expires_delta=timedelta(minutes=settings.access_token_expire_minutes)
        ),
        "refresh_token": create_refresh_token(
            payload, expires_delta=timedelta(minutes=settings.refresh_token_expire_minutes)
        ),
        "token_type": "bearer",
        "user_id": str(user_id),
    }


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        if payload.get("type") != "access":
            raise credentials_exception
        token_data = schemas.TokenData(email=payload.get("email"), user_id=payload.get("sub"))
        if token_data.user_id is None:
            raise credentials_exception
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError:
        raise credentials_exception
    user = db.query(models.User).filter(models.User.id == token_data.user_id).first()
    if user is None:
        raise credentials_exception
    return user


def get_optional_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    if not token:
        return None
    try:
        return get_current_user(token, db)  # type: ignore
    except HTTPException:
        return None


def is_admin_user(db: Session, user: Optional[models.User]) -> bool:
    if user is None:
        return False
    if user.email and user.email.strip().lower() in set(settings.admin_emails):
        return True
    return (
        db.query(models.RoleAssignment.id)
        .filter(
            models.RoleAssignment.user_id == user.id,
            models.RoleAssignment.role == models.AppRole.admin,
            models.RoleAssignment.is_active.is_(True),
        )
        .first()
        is not None
    )


class AuthSession:
    """The signed-in user together with their resolved admin status and permissions."""

    def __init__(self, user: models.User, is_admin: bool, permissions: set[str]):
        self.user = user
        self.is_admin = is_admin
        self.permissions = frozenset(permissions)

    @property
    def user_id(self) -> str:
        return self.user.id

    def has_permission(self, permission: str) -> bool:
        if not self.is_admin:
            return False
        # Admins without explicit permission rows predate fine-grained permissions.
        if not self.permissions:
            return True
        accepted = PERMISSION_GROUPS.get(permission, frozenset({permission}))
        return bool(self.permissions & accepted)


def build_session(db: Session, user: models.User) -> AuthSession:
    admin = is_admin_user(db, user)
    permissions: set[str] = set()
    if admin:
        permissions = {
            row.permission
            for row in db.query(models.UserPermission).filter(models.UserPermission.user_id == user.id).all()
        }
    return AuthSession(user, admin, permissions)


def get_session(user: models.User = Depends(get_current_user), db: Session = Depends(database.get_db)) -> AuthSession:
    return build_session(db, user)


def require_admin(session: AuthSession = Depends(get_session)) -> AuthSession:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=NO_PERMISSION_MESSAGE)
    return session


def require_permission(permission: str):
    def dependency(session: AuthSession = Depends(require_admin)) -> AuthSession:
        if not session.has_permission(permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=NO_PERMISSION_MESSAGE)
        return session

    return dependency

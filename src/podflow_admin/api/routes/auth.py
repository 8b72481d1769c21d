"""Authentication endpoints and request dependencies."""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType
from ...core.types import ADMIN_ROLES
from ...db.models import User
from ..config import APISettings, get_settings
from ..deps import get_db_session
from ..schemas import TokenResponse, UserLogin

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def create_access_token(
    user_id: UUID,
    settings: APISettings,
    expires_delta: timedelta | None = None,
    organization_id: UUID | None = None,
) -> str:
    """Create a JWT access token. The organization rides along as ``org``."""
    import jwt

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if organization_id:
        payload["org"] = str(organization_id)

    token: str = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token


def verify_token(token: str, settings: APISettings) -> dict[str, Any]:
    """Verify and decode a JWT token."""
    import jwt

    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    import bcrypt

    hashed: str = bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()
    return hashed


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against its hash."""
    import bcrypt

    try:
        result: bool = bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False
    return result


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    settings: Annotated[APISettings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> User:
    """Get the current authenticated user."""
    from ...db.repositories import UserRepository

    payload = verify_token(token, settings)
    try:
        user_id = UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await UserRepository(session).get_by_id(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


async def require_admin(user: Annotated[User, Depends(get_current_user)]) -> User:
    """Current user, who must be an admin or master inside an organization."""
    if user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )

    if not user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No organization context",
        )

    return user


async def require_organization(user: Annotated[User, Depends(get_current_user)]) -> User:
    """Current user, who must belong to an organization."""
    if not user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No organization context",
        )

    return user


async def _authenticate(
    request: Request,
    session: AsyncSession,
    settings: APISettings,
    email: str,
    password: str,
) -> TokenResponse:
    from ...db.repositories import UserRepository

    audit = get_audit_service()
    user = await UserRepository(session).get_by_email(email)

    if not user or not verify_password(password, user.password_hash):
        await audit.log_auth(
            AuditEventType.USER_LOGIN_FAILED,
            user.id if user else None,
            {"email": email, "reason": "invalid_credentials"},
            request=request,
            organization_id=user.organization_id if user else None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        await audit.log_auth(
            AuditEventType.USER_LOGIN_FAILED,
            user.id,
            {"email": email, "reason": "account_disabled"},
            request=request,
            organization_id=user.organization_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    await audit.log_auth(
        AuditEventType.USER_LOGIN,
        user.id,
        {"email": email},
        request=request,
        organization_id=user.organization_id,
    )

    return TokenResponse(
        access_token=create_access_token(
            user.id, settings, organization_id=user.organization_id
        ),
        token_type="bearer",
        expires_in=settings.jwt_expiration_hours * 3600,
    )


@router.post("/token", response_model=TokenResponse)
async def login(
    request: Request,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    settings: Annotated[APISettings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> TokenResponse:
    """
    OAuth2 token endpoint.

    Exchange username/password for an access token.
    """
    return await _authenticate(request, session, settings, form_data.username, form_data.password)


@router.post("/login", response_model=TokenResponse)
async def login_json(
    request: Request,
    credentials: UserLogin,
    settings: Annotated[APISettings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> TokenResponse:
    """
    JSON login endpoint.

    Alternative to OAuth2 form-based login.
    """
    return await _authenticate(request, session, settings, credentials.email, credentials.password)

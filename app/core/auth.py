"""Authentication dependencies for FastAPI."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)

SYSTEM_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

ADMIN_ROLES = ("admin", "manager")


class AuthContext:
    """Context object containing authenticated user info."""

    def __init__(
        self,
        user_id: UUID,
        token: str,
        role: str = "user",
        organization_id: Optional[UUID] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ):
        self.user_id = user_id
        self.token = token
        self.role = role
        self.organization_id = organization_id
        self.email = email
        self.full_name = full_name

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_system(self) -> bool:
        return self.user_id == SYSTEM_USER_ID

    def can_access_org(self, org_id: Optional[UUID | str]) -> bool:
        """Check if user can act on records of an organization."""
        if self.is_admin:
            return True
        if org_id is None or self.organization_id is None:
            return False
        return str(org_id) == str(self.organization_id)


def _load_profile(user_id: str) -> Optional[dict]:
    from app.db.supabase_client import get_supabase

    response = (
        get_supabase()
        .table("lightpoint_users")
        .select("id, email, full_name, role, organization_id")
        .eq("id", user_id)
        .execute()
    )
    return response.data[0] if response.data else None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[AuthContext]:
    """
    Extract and validate the current user from the request.

    Supports two authentication methods:
    1. Supabase JWT tokens (Bearer auth) with a lightpoint_users profile
    2. Admin API key (X-API-Key header) for internal tools and workers

    Returns None if no valid auth is present (for optional auth endpoints).
    """
    admin_key = get_settings().ADMIN_API_KEY
    if x_api_key and admin_key and x_api_key == admin_key:
        logger.debug("Authenticated via admin API key")
        return AuthContext(
            user_id=SYSTEM_USER_ID,
            token="api-key",
            role="admin",
            email="system@lightpoint.app",
            full_name="Lightpoint System",
        )

    if not credentials:
        return None

    token = credentials.credentials

    try:
        from app.db.supabase_client import get_supabase

        auth_response = get_supabase().auth.get_user(token)
        if not auth_response or not auth_response.user:
            return None

        supabase_user_id = auth_response.user.id
        profile = _load_profile(supabase_user_id)

        if not profile:
            logger.warning(f"User {supabase_user_id} has no lightpoint_users profile")
            return AuthContext(
                user_id=UUID(supabase_user_id),
                token=token,
                email=auth_response.user.email,
            )

        org_id = profile.get("organization_id")
        return AuthContext(
            user_id=UUID(supabase_user_id),
            token=token,
            role=profile.get("role") or "user",
            organization_id=UUID(org_id) if org_id else None,
            email=profile.get("email") or auth_response.user.email,
            full_name=profile.get("full_name"),
        )

    except Exception as e:
        logger.warning(f"Auth error: {e}")
        return None


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """Require authentication. Raises 401 if not authenticated."""
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


async def require_admin(
    auth: AuthContext = Depends(require_auth),
) -> AuthContext:
    """Require an admin or manager role."""
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return auth


def ensure_org_access(auth: AuthContext, org_id: Optional[UUID | str]) -> None:
    """Raise 403 unless the caller may touch records of org_id."""
    if not auth.can_access_org(org_id):
        from app.db.audit_log import access_denied

        access_denied(
            auth.user_id,
            auth.organization_id,
            "organization",
            str(org_id) if org_id else None,
            "Access to this organization denied",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access to this organization denied",
        )

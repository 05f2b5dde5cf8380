from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from dataclasses import dataclass
import jwt
import os
from dotenv import load_dotenv

from crm.config import get_integration_config
from crm.i18n import resolve_language

load_dotenv()

security = HTTPBearer()


# ============================================================
# User Types
# ============================================================

@dataclass
class UserContext:
    """Context for an authenticated CRM user."""
    user_id: str
    organization_id: str
    role: str  # 'admin' or 'user'
    name: str = "Unknown"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        """Admins see every deal in the organization."""
        return self.role == "admin"


# Lazy import to avoid circular imports
_supabase_service = None

def _get_supabase():
    """Lazy load supabase service client."""
    global _supabase_service
    if _supabase_service is None:
        from crm.database import get_supabase_service
        _supabase_service = get_supabase_service()
    return _supabase_service


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """
    Verifies the Supabase JWT token and returns the user payload.
    """
    token = credentials.credentials

    try:
        # Supabase signs tokens with HS256 and the JWT secret
        payload = jwt.decode(
            token,
            os.getenv("SUPABASE_JWT_SECRET"),
            algorithms=["HS256"],
            audience="authenticated",
            options={"verify_aud": False}
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_user_context(current_user: dict = Depends(get_current_user)) -> UserContext:
    """
    Resolve the caller's organization and role from the users table.

    Raises:
        HTTPException 401: If user token has no subject
        HTTPException 403: If user has no CRM profile or is disabled
    """
    user_id = current_user.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user token"
        )

    supabase = _get_supabase()
    result = supabase.table("users") \
        .select("id, name, email, role, organization_id, disabled") \
        .eq("id", user_id) \
        .maybe_single() \
        .execute()

    if not result or not result.data:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User has no CRM profile"
        )

    profile = result.data
    if profile.get("disabled"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled"
        )
    if not profile.get("organization_id"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User has no organization"
        )

    return UserContext(
        user_id=user_id,
        organization_id=profile["organization_id"],
        role=profile.get("role") or "user",
        name=profile.get("name") or "Unknown",
        email=profile.get("email") or current_user.get("email"),
    )


async def require_admin(ctx: UserContext = Depends(get_user_context)) -> UserContext:
    """Dependency that only lets organization admins through."""
    if not ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return ctx


def get_language(language: Optional[str] = Query(None, max_length=5)) -> str:
    """Language for server-generated text (timeline entries, fallbacks)."""
    return resolve_language(language, get_integration_config().default_language)

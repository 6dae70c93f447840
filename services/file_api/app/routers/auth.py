# services/file_api/app/routers/auth.py
import asyncio
import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from supabase import AuthError

from core.models import AuthCredentials, AuthSession, AuthenticatedUser, GatewayResponse, SignupResult
from core.supabase_client import create_auth_client
from ..dependencies import get_current_user, rate_limiter

logger = logging.getLogger("FileManager_Core").getChild("FileAPI").getChild("AuthRouter")

router = APIRouter(dependencies=[Depends(rate_limiter)])


def _to_session(session, user) -> AuthSession:
    return AuthSession(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", None),
        token_type=getattr(session, "token_type", None) or "bearer",
        expires_in=getattr(session, "expires_in", None),
        user_id=str(user.id),
        email=getattr(user, "email", None),
    )


@router.post("/signup", response_model=GatewayResponse)
async def signup(payload: AuthCredentials = Body(...)):
    """Create an account with the identity provider."""
    logger.info(f"Sign-up requested for {payload.email}")
    try:
        supabase = await create_auth_client()
        response = await asyncio.to_thread(
            supabase.auth.sign_up, {"email": payload.email, "password": payload.password}
        )
    except AuthError as e:
        logger.warning(f"Sign-up rejected for {payload.email}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected sign-up error for {payload.email}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Sign-up failed.")

    user = response.user
    session = _to_session(response.session, user) if response.session and user else None
    result = SignupResult(
        user_id=str(user.id) if user else None,
        email=getattr(user, "email", payload.email) if user else payload.email,
        session=session,
    )
    message = "Account created." if session else "Account created. Check your email to confirm it."
    return GatewayResponse(status="success", data=result, message=message)


@router.post("/login", response_model=GatewayResponse)
async def login(payload: AuthCredentials = Body(...)):
    """Exchange email/password for an access token."""
    logger.info(f"Login requested for {payload.email}")
    try:
        supabase = await create_auth_client()
        response = await asyncio.to_thread(
            supabase.auth.sign_in_with_password, {"email": payload.email, "password": payload.password}
        )
    except AuthError as e:
        logger.warning(f"Login rejected for {payload.email}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected login error for {payload.email}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Login failed.")

    if not response.session or not response.user:
        raise HTTPException(status_code=400, detail="Login failed: no session returned.")
    return GatewayResponse(status="success", data=_to_session(response.session, response.user), message="Logged in.")


@router.get("/me", response_model=GatewayResponse)
async def me(user: AuthenticatedUser = Depends(get_current_user)):
    return GatewayResponse(status="success", data=user)

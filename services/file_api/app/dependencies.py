# services/file_api/app/dependencies.py
import asyncio
import time
from typing import Optional

from fastapi import Depends, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import AuthError

from core.config import settings, logger as core_logger
from core.models import AuthenticatedUser
from core.supabase_client import get_supabase_client

logger = core_logger.getChild("FileAPI").getChild("Dependencies")

bearer_scheme = HTTPBearer(auto_error=False)


# --- Authentication ---
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """Validates the bearer token with the identity provider and returns its user."""
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")

    token = credentials.credentials
    try:
        supabase = await get_supabase_client()
        response = await asyncio.to_thread(supabase.auth.get_user, token)
    except AuthError as e:
        logger.warning(f"Token rejected by identity provider: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except Exception as e:
        logger.error(f"Auth error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication failed")

    user = getattr(response, "user", None)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return AuthenticatedUser(id=str(user.id), email=getattr(user, "email", None))


# --- Upload Validation ---
async def read_validated_upload(file: Optional[UploadFile]) -> bytes:
    """Checks presence, type and size of an uploaded file and returns its bytes."""
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    if file.content_type not in settings.ALLOWED_MIME_TYPES:
        logger.warning(f"Rejected upload '{file.filename}' with type '{file.content_type}'.")
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only JPEG, PNG, PDF, and DOCX files are allowed",
        )
    # Read one byte past the limit so oversized files are detected without reading them fully
    content = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        limit_mb = settings.MAX_UPLOAD_BYTES / (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File is too large. Max allowed is {limit_mb:g} MB.",
        )
    return content


# --- Rate Limiting ---
# In-memory, per process: NOT suitable for multi-instance deployments
RATE_LIMIT_STORE = {}

async def rate_limiter(request: Request):
    client_ip = request.client.host if request.client else "unknown"
    current_time = time.time()
    period = settings.RATE_LIMIT_PERIOD

    # Basic cleanup (inefficient for high load)
    for ip in list(RATE_LIMIT_STORE.keys()):
        if current_time - RATE_LIMIT_STORE[ip]['timestamp'] > period * 1.5:
            RATE_LIMIT_STORE.pop(ip, None)

    client_data = RATE_LIMIT_STORE.get(client_ip)
    if not client_data or current_time - client_data['timestamp'] >= period:
        RATE_LIMIT_STORE[client_ip] = {'count': 1, 'timestamp': current_time}
        return

    if client_data['count'] >= settings.RATE_LIMIT_MAX_CALLS:
        logger.warning(f"Rate limit exceeded for IP: {client_ip}")
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
    client_data['count'] += 1
    client_data['timestamp'] = current_time

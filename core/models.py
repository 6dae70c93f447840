# core/models.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Any, Literal
import datetime

from core.config import settings

# --- Auth Models ---

class AuthCredentials(BaseModel):
    """Email/password pair forwarded to the identity provider."""
    email: str = Field(..., min_length=3, description="Account email address")
    password: str = Field(..., min_length=6, description="Account password (provider minimum is 6 characters)")

    @field_validator('email')
    @classmethod
    def check_email(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError("A valid email address is required.")
        return value

class AuthSession(BaseModel):
    """Tokens returned by a successful sign-in."""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user_id: str
    email: Optional[str] = None

class SignupResult(BaseModel):
    """Result of a sign-up. `session` is None when email confirmation is required."""
    user_id: Optional[str] = None
    email: Optional[str] = None
    session: Optional[AuthSession] = None

class AuthenticatedUser(BaseModel):
    """The user behind a validated bearer token."""
    id: str
    email: Optional[str] = None


# --- File Models ---

class FileAnalysis(BaseModel):
    """AI suggestions for an uploaded file, shown to the user before commit."""
    descriptive_filename: str = Field(..., description="Suggested name without extension")
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    extension: str = Field(default="", description="Extension of the original filename, without the dot")

class FileRecord(BaseModel):
    """A row of the 'files' metadata table, plus its public URL."""
    id: Optional[Any] = None
    name: str
    size: int = 0
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    url: Optional[str] = None

    @field_validator('tags', 'categories', mode='before')
    @classmethod
    def none_to_empty(cls, value):
        return value or []

    class Config:
        from_attributes = True

class UploadResult(BaseModel):
    file_path: str = Field(description="Final stored filename")
    record: Optional[FileRecord] = None

class RenameRequest(BaseModel):
    new_name: str = Field(..., description="New filename; the original extension is kept when omitted")

class ShareRequest(BaseModel):
    expires_in: int = Field(default=settings.SHARE_LINK_EXPIRY_SECONDS, gt=0, le=7 * 24 * 3600)

class ShareLink(BaseModel):
    filename: str
    url: str
    expires_in: int


# --- Assistant Models ---

class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)

class ChatResponse(BaseModel):
    reply: str
    mode: Literal["search", "chat"]
    keywords: List[str] = Field(default_factory=list)
    files: List[FileRecord] = Field(default_factory=list)

class FileQuestionRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)

class FileAnswer(BaseModel):
    filename: str
    answer: str


# --- Response Envelope ---

class GatewayResponse(BaseModel):
    """Standard response wrapper for the file API."""
    status: str = Field(description="'success' or 'error'")
    data: Any | None = Field(default=None, description="The primary data payload (depends on the endpoint)")
    message: Optional[str] = Field(default=None, description="Optional status message or error details")

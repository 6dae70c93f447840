# core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import logging
from typing import List, Optional

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None # ANON key usually
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key, bypasses RLS

    # --- Storage Configuration ---
    BUCKET_NAME: str = "files"

    # --- Gemini Configuration ---
    GEMINI_API_KEY: str = "YOUR_GEMINI_API_KEY_HERE"
    GEMINI_FLASH_MODEL: str = "gemini-1.5-flash"
    GEMINI_PRO_MODEL: str = "gemini-1.5-pro"
    GEMINI_RETRIES: int = 3
    GEMINI_RETRY_DELAY: float = 2.0

    # --- Upload Limits ---
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024 # 5 MB
    ALLOWED_MIME_TYPES: List[str] = [
        "image/jpeg",
        "image/png",
        "application/pdf",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document", # docx
    ]

    # --- Sharing & Retention ---
    SHARE_LINK_EXPIRY_SECONDS: int = 3600
    FILE_RETENTION_HOURS: Optional[int] = None # None disables the retention sweep
    RETENTION_SWEEP_INTERVAL_SECONDS: int = 3600

    # --- API Behaviour ---
    RATE_LIMIT_MAX_CALLS: int = 100
    RATE_LIMIT_PERIOD: int = 60 # seconds
    CORS_ORIGINS: List[str] = ["*"]

    # --- Service URLs ---
    FILE_API_URL: str = "http://localhost:8000"
    UI_SERVICE_URL: str = "http://localhost:7860"

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("FileManager_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING); logging.getLogger("gradio").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.SUPABASE_URL or not settings.SUPABASE_KEY: logger.warning("Supabase URL/Key missing.")
if not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase Service Key missing, data access will use the anon key.")
if not settings.GEMINI_API_KEY or settings.GEMINI_API_KEY == "YOUR_GEMINI_API_KEY_HERE": logger.warning("GEMINI_API_KEY missing.")
if not settings.BUCKET_NAME: logger.warning("BUCKET_NAME missing, uploads will fail.")
else: logger.info(f"Using Supabase Storage Bucket: {settings.BUCKET_NAME}")

try: assert settings.MAX_UPLOAD_BYTES > 0; logger.info(f"Upload limit: {settings.MAX_UPLOAD_BYTES} bytes, types: {', '.join(settings.ALLOWED_MIME_TYPES)}")
except AssertionError: logger.error(f"Invalid MAX_UPLOAD_BYTES: {settings.MAX_UPLOAD_BYTES}.")
if settings.FILE_RETENTION_HOURS:
    logger.info(f"Retention sweep enabled: files older than {settings.FILE_RETENTION_HOURS}h are deleted every {settings.RETENTION_SWEEP_INTERVAL_SECONDS}s")

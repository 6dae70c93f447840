# services/file_api/app/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from core.config import settings
from core.models import GatewayResponse
from core.supabase_client import get_data_client
import asyncio
import logging
from contextlib import asynccontextmanager

from .maintenance import retention_loop

# Use logger configured in core.config
logger = logging.getLogger("FileManager_Core").getChild("FileAPI")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: warm the Supabase client and start the retention sweep if configured
    logger.info("File API lifespan startup: Initializing Supabase client.")
    try:
        await get_data_client()
        app.state.supabase_ready = True
        logger.info("Supabase client ready.")
    except (ValueError, RuntimeError) as e:
        # Requests will fail with a clear error until configuration is fixed
        logger.error(f"Supabase client unavailable at startup: {e}")
        app.state.supabase_ready = False

    app.state.retention_task = None
    if settings.FILE_RETENTION_HOURS:
        app.state.retention_task = asyncio.create_task(retention_loop(settings.FILE_RETENTION_HOURS))

    yield # Application runs here

    logger.info("File API lifespan shutdown: Cleaning up resources.")
    task = getattr(app.state, 'retention_task', None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Retention sweep stopped.")


# --- FastAPI App ---
app = FastAPI(
    title="AI File Manager API",
    description="Upload, AI-label, list, rename, share and delete files stored in Supabase",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Health Check ---
@app.get("/health", response_model=GatewayResponse, tags=["Meta"])
async def health_check(request: Request):
    supabase_status = "ready" if getattr(request.app.state, 'supabase_ready', False) else "NOT configured"
    return GatewayResponse(status="success", message=f"File API is running (Supabase: {supabase_status})")

# --- Routing ---
from .routers import assistant, auth, files

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(files.router, prefix="/files", tags=["Files"])
app.include_router(assistant.router, prefix="/assistant", tags=["Assistant"])

@app.get("/", response_model=GatewayResponse, tags=["Meta"])
async def read_root():
    return GatewayResponse(status="success", message="Welcome to the AI File Manager API")

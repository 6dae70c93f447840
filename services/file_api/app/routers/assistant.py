# services/file_api/app/routers/assistant.py
import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from core.models import AuthenticatedUser, ChatRequest, FileQuestionRequest, GatewayResponse
from .. import assistant, crud
from ..dependencies import get_current_user, rate_limiter

logger = logging.getLogger("FileManager_Core").getChild("FileAPI").getChild("AssistantRouter")

router = APIRouter(dependencies=[Depends(rate_limiter)])


@router.post("/chat", response_model=GatewayResponse)
async def chat(payload: ChatRequest = Body(...), user: AuthenticatedUser = Depends(get_current_user)):
    """Answer a chat message, searching the user's files when the message asks for them."""
    try:
        response = await assistant.reply_to_message(user.id, payload.message)
    except Exception as e:
        logger.error(f"[{user.id}] Chat failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error searching files")
    return GatewayResponse(status="success", data=response)


@router.post("/ask", response_model=GatewayResponse)
async def ask_about_file(payload: FileQuestionRequest = Body(...), user: AuthenticatedUser = Depends(get_current_user)):
    """Answer a question using one of the user's stored files as context."""
    job_prefix = f"[{user.id}:{payload.filename}]"
    try:
        record = await crud.get_file(user.id, payload.filename)
    except Exception as e:
        logger.error(f"{job_prefix} Lookup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    if not record:
        raise HTTPException(status_code=404, detail="File not found or access denied")

    try:
        answer = await assistant.answer_file_question(user.id, record, payload.question)
    except Exception as e:
        logger.error(f"{job_prefix} Answering failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error connecting to document analysis service.")
    if answer is None:
        raise HTTPException(status_code=500, detail="Failed to answer the question.")
    return GatewayResponse(status="success", data=answer)

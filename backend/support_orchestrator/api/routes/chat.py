"""
Chat API routes for message handling.
"""
import logging

from fastapi import APIRouter, Depends

from ...agents.orchestrator import ConversationOrchestrator
from ...models.schemas import ChatRequest, ChatResponse
from ..dependencies import get_orchestrator, get_request_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def send_message(
    chat_request: ChatRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    request_id: str = Depends(get_request_id)
):
    """
    Send a message and receive the agent's reply.

    Returns:
        Reply with the tools used and any ticket state. Processing failures
        still return 200 with an apology; only missing fields (400) and
        unknown tenants (404) are errors.
    """
    logger.info(
        f"Chat message received for tenant {chat_request.tenant_id}",
        extra={"request_id": request_id, "session_id": chat_request.session_id}
    )
    return await orchestrator.handle(chat_request, request_id=request_id)

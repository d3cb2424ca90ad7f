"""
Session API routes: history and feedback.
"""
import logging

from fastapi import APIRouter, Depends, Query

from ...agents.orchestrator import ConversationOrchestrator
from ...models.schemas import FeedbackRequest, HistoryMessage, HistoryResponse
from ...session.session_store import SessionStore
from ..dependencies import get_orchestrator, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sessions/{session_id}/history", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    limit: int = Query(50, ge=1, le=1000),
    session_store: SessionStore = Depends(get_session_store)
):
    """
    Get the most recent messages of a session, oldest first.

    Unknown sessions return an empty history.
    """
    messages = await session_store.history(session_id, limit=limit)
    metadata = await session_store.get_metadata(session_id)

    return HistoryResponse(
        session_id=session_id,
        messages=[
            HistoryMessage(
                id=message.id,
                role=str(message.role),
                content=message.content,
                timestamp=message.timestamp,
                tools_used=message.tools_used
            )
            for message in messages
        ],
        escalated=metadata.escalated
    )


@router.post("/sessions/{session_id}/feedback")
async def submit_feedback(
    session_id: str,
    feedback: FeedbackRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator)
):
    """Rate a conversation from 1 to 5."""
    metadata = await orchestrator.record_feedback(session_id, feedback.rating, feedback.comment)
    return {
        "success": True,
        "sessionId": session_id,
        "feedbackCount": len(metadata.extra.get("feedback", []))
    }

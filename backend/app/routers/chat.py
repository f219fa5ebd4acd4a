from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.models import AskRequest, AskResponse, FeedbackVoteRequest
from app.services.ai_assistant import AIAssistant, AssistantValidationError, get_ai_assistant
from app.services.feedback_store import (
    FeedbackStoreConflictError,
    FeedbackStoreError,
    FeedbackStoreNotFoundError,
)

router = APIRouter(prefix="/chat", tags=["chat"])


def _client_id(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _raise_feedback_http_error(exc: FeedbackStoreError) -> None:
    if isinstance(exc, FeedbackStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, FeedbackStoreConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


@router.post("/ask", response_model=AskResponse)
def ask(payload: AskRequest, request: Request, assistant: AIAssistant = Depends(get_ai_assistant)):
    try:
        return assistant.ask_question(
            question=payload.question,
            session_id=payload.session_id,
            client_id=_client_id(request),
        )
    except AssistantValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/feedback", response_model=dict)
def submit_feedback(payload: FeedbackVoteRequest, assistant: AIAssistant = Depends(get_ai_assistant)):
    try:
        record = assistant.submit_feedback(record_id=payload.record_id, useful=payload.useful, comment=payload.comment)
    except FeedbackStoreError as exc:
        _raise_feedback_http_error(exc)
    return {"record_id": record.id, "was_useful": record.was_useful, "voted_at": record.voted_at}


@router.get("/welcome", response_model=dict)
def welcome(assistant: AIAssistant = Depends(get_ai_assistant)):
    return {"message": assistant.welcome_message(), "llm_configured": assistant.llm_available}

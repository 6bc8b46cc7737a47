"""
Chat session endpoints: list, create, rename, delete, messages, completions.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from ragchat.api.dependencies import get_pipeline, get_session_cache
from ragchat.core.pipeline import ChatPipeline
from ragchat.session.cache import SessionCache
from ragchat.session.models import Message, Session

router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionOut(BaseModel):
    session_id: str
    name: str
    tokens_used: int

    @classmethod
    def of(cls, session: Session) -> "SessionOut":
        return cls(
            session_id=session.session_id,
            name=session.name,
            tokens_used=session.tokens_used,
        )


class MessageOut(BaseModel):
    sender: str
    text: str
    tokens: int
    prompt_tokens: Optional[int] = None
    timestamp: datetime

    @classmethod
    def of(cls, message: Message) -> "MessageOut":
        return cls(
            sender=message.sender,
            text=message.text,
            tokens=message.tokens,
            prompt_tokens=message.prompt_tokens,
            timestamp=message.timestamp,
        )


class RenameRequest(BaseModel):
    name: str = Field(min_length=1)


class CompletionRequest(BaseModel):
    prompt: str = Field(min_length=1)
    collection: str


class CompletionResponse(BaseModel):
    session_id: str
    completion: str
    trimmed: bool


class SummarizeRequest(BaseModel):
    prompt: str = Field(min_length=1)


@router.get("", response_model=List[SessionOut])
async def list_sessions(cache: SessionCache = Depends(get_session_cache)):
    sessions = await cache.list_sessions()
    return [SessionOut.of(s) for s in sessions]


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(cache: SessionCache = Depends(get_session_cache)):
    session = await cache.create_session()
    return SessionOut.of(session)


@router.get("/{session_id}/messages", response_model=List[MessageOut])
async def get_messages(session_id: str, cache: SessionCache = Depends(get_session_cache)):
    messages = await cache.get_messages(session_id)
    return [MessageOut.of(m) for m in messages]


@router.patch("/{session_id}", response_model=SessionOut)
async def rename_session(
    session_id: str,
    body: RenameRequest,
    cache: SessionCache = Depends(get_session_cache),
):
    session = await cache.rename_session(session_id, body.name)
    return SessionOut.of(session)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, cache: SessionCache = Depends(get_session_cache)):
    await cache.delete_session(session_id)
    return Response(status_code=204)


@router.post("/{session_id}/completions", response_model=CompletionResponse)
async def chat_completion(
    session_id: str,
    body: CompletionRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
):
    """Run one chat turn. Failures surface through the app's error handler."""
    result = await pipeline.get_chat_completion(session_id, body.prompt, body.collection)
    return CompletionResponse(
        session_id=session_id,
        completion=result.unwrap(),
        trimmed=result.trimmed,
    )


@router.post("/{session_id}/summarize", response_model=SessionOut)
async def summarize_session(
    session_id: str,
    body: SummarizeRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
):
    await pipeline.summarize_session_name(session_id, body.prompt)
    return SessionOut.of(pipeline.cache.get_session(session_id))

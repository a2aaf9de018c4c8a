"""
Sessions API router.
POST   /sessions                 create an in-memory agent session
GET    /sessions/{id}/messages   conversation history snapshot
DELETE /sessions/{id}            drop a session
POST   /sessions/{id}/turn       send a user message (returns SSE stream)
"""
from __future__ import annotations

import json
import logging
import uuid
from contextlib import aclosing
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from turnloop.agent.loop import Agent
from turnloop.config import get_config
from turnloop.errors import TurnLoopError
from turnloop.messages import Message
from turnloop.models.base import ToolPolicy
from turnloop.models.registry import get_adapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

# session_id → agent; process memory only
_sessions: dict[str, Agent] = {}


class CreateSessionRequest(BaseModel):
    model: str | None = None
    system_prompt: str | None = None


class TurnRequest(BaseModel):
    content: str


def _build_agent(model_name: str | None, system_prompt: str | None, providers: list) -> Agent:
    cfg = get_config()
    agent_cfg = cfg.agent
    return Agent(
        get_adapter(model_name),
        system_prompt=system_prompt or agent_cfg.system_prompt,
        providers=providers,
        max_tokens=agent_cfg.max_tokens,
        temperature=agent_cfg.temperature,
        top_p=agent_cfg.top_p,
        stop_sequences=agent_cfg.stop_sequences or None,
        tool_policy=ToolPolicy(mode=agent_cfg.tool_policy),
        max_rounds=agent_cfg.max_rounds,
        parallel_tool_calls=cfg.tools.parallel,
    )


def _get_session(session_id: str) -> Agent:
    agent = _sessions.get(session_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return agent


@router.post("")
async def create_session(body: CreateSessionRequest, request: Request):
    providers = getattr(request.app.state, "tool_providers", [])
    try:
        agent = _build_agent(body.model, body.system_prompt, providers)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session_id = str(uuid.uuid4())
    _sessions[session_id] = agent
    return {"id": session_id, "model": agent.adapter.model_name}


@router.get("/{session_id}/messages")
async def list_messages(session_id: str):
    agent = _get_session(session_id)
    return [m.model_dump(mode="json") for m in agent.messages()]


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    _sessions.pop(session_id, None)
    return {"ok": True}


@router.post("/{session_id}/turn")
async def run_turn(session_id: str, body: TurnRequest):
    agent = _get_session(session_id)
    if agent.running:
        raise HTTPException(status_code=409, detail="A turn is already running")

    async def event_stream() -> AsyncIterator[str]:
        # The user message is appended by the turn once it holds the agent.
        try:
            async with aclosing(agent.turn(Message.user(body.content))) as events:
                async for event in events:
                    yield f"data: {event.model_dump_json()}\n\n"
        except TurnLoopError as e:
            logger.warning(f"Turn failed in session {session_id}: {e}")
            payload = json.dumps({"type": "error", "message": str(e), "error": type(e).__name__})
            yield f"data: {payload}\n\n"

        yield "data: [DONE]\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")

"""
FastAPI application: EC2 power control, streaming chat relay, titles and
chat sessions.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from ec2chat.backends import GENERIC_FAILURE
from ec2chat.config import settings
from ec2chat.database import init_database
from ec2chat.deps import close_clients, get_poller, get_relay, get_title_generator
from ec2chat.errors import RelayError
from ec2chat.instance import StatusPoller
from ec2chat.models import (
    NEW_CHAT_TITLE,
    ChatRequest,
    ChatTurn,
    ConversationSession,
    PowerRequest,
    PowerResult,
    Provider,
    SessionCreateResponse,
    SessionMessageRequest,
    SessionSummary,
    StatusResponse,
    TitleRequest,
    TitleResponse,
    ToggleRequest,
)
from ec2chat.relay import ChatRelay
from ec2chat.session_manager import (
    activate_session,
    add_turn,
    create_session,
    delete_session,
    get_active_session,
    get_session,
    list_sessions,
    set_title_once,
    update_session_activity,
    update_turn_content,
)
from ec2chat.titles import TitleGenerator


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

logger = logging.getLogger(__name__)

TEXT_STREAM = "text/plain; charset=utf-8"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup, close upstream clients on shutdown."""
    await init_database()
    yield
    await close_clients()


app = FastAPI(
    title="EC2 Chat Service",
    version="1.0.0",
    lifespan=lifespan
)


# ---------------------------------------------------------------------------
# Instance lifecycle
# ---------------------------------------------------------------------------

@app.get("/api/instance/status", response_model=StatusResponse)
async def instance_status(poller: StatusPoller = Depends(get_poller)):
    """One poll tick. Clients call this every few seconds."""
    status = await poller.tick()
    has_cloud_model = bool(settings.hf_token)
    return StatusResponse(
        state=status.state,
        public_address=status.public_address,
        polling=poller.polling,
        model_name=settings.ollama_model,
        cloud_model_name=settings.cloud_model_name if has_cloud_model else None,
        has_cloud_model=has_cloud_model,
    )


@app.post("/api/instance/power", response_model=PowerResult)
async def instance_power(body: PowerRequest, poller: StatusPoller = Depends(get_poller)):
    result = await poller.monitor.set_power(body.action, body.password)
    if result.success:
        poller.mark_active()
    return result


@app.post("/api/instance/toggle", response_model=PowerResult)
async def instance_toggle(body: ToggleRequest, poller: StatusPoller = Depends(get_poller)):
    """Stop the instance if it is running, otherwise start it."""
    result = await poller.monitor.toggle(body.password)
    if result.success:
        poller.mark_active()
    return result


# ---------------------------------------------------------------------------
# Chat relay and titles
# ---------------------------------------------------------------------------

def _error_response(e: RelayError) -> PlainTextResponse:
    return PlainTextResponse(e.message, status_code=e.status_code)


@app.post("/api/chat")
async def chat(body: ChatRequest, relay: ChatRelay = Depends(get_relay)):
    """Stream the assistant reply as raw text."""
    try:
        chunks = await relay.open(body.messages, body.provider)
    except RelayError as e:
        logger.warning("Chat request rejected (%s): %s", body.provider.value, e.message)
        return _error_response(e)
    except Exception:
        logger.exception("Chat error")
        return PlainTextResponse(GENERIC_FAILURE, status_code=500)

    return StreamingResponse(chunks, media_type=TEXT_STREAM)


@app.post("/api/title", response_model=TitleResponse)
async def title(body: TitleRequest, titles: TitleGenerator = Depends(get_title_generator)):
    return TitleResponse(title=await titles.generate(body.message, body.provider))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@app.post("/api/sessions/new", response_model=SessionCreateResponse)
async def create_new_session():
    """Create a new chat session and make it active."""
    session_id = await create_session()
    return SessionCreateResponse(session_id=session_id)


@app.get("/api/sessions", response_model=list[SessionSummary])
async def sessions():
    return await list_sessions()


@app.get("/api/sessions/active", response_model=ConversationSession)
async def active_session():
    """Return the active session, creating one on first use."""
    session = await get_active_session()
    if session is None:
        session = await get_session(await create_session())
    return session


@app.get("/api/sessions/{session_id}", response_model=ConversationSession)
async def session_detail(session_id: str):
    session = await get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.post("/api/sessions/{session_id}/activate")
async def activate(session_id: str):
    if not await activate_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"active_session_id": session_id}


@app.delete("/api/sessions/{session_id}")
async def remove_session(session_id: str):
    active_id = await delete_session(session_id)
    if active_id is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"active_session_id": active_id}


async def _stream_into_turn(session_id: str, turn_id: str, chunks: AsyncIterator[str]):
    content = ""
    try:
        async for chunk in chunks:
            content += chunk
            await update_turn_content(turn_id, content)
            yield chunk
    finally:
        await chunks.aclose()
        await update_session_activity(session_id)


async def _generate_session_title(session_id: str, provider: Provider, titles: TitleGenerator):
    session = await get_session(session_id)
    if not session or session.title != NEW_CHAT_TITLE:
        return

    first_user = next((t for t in session.turns if t.role == "user"), None)
    if first_user is None or not first_user.content.strip():
        return

    new_title = await titles.generate(first_user.content, provider)
    if await set_title_once(session_id, new_title):
        logger.info("Titled session %s: %s", session_id[:8], new_title)


@app.post("/api/sessions/{session_id}/messages")
async def send_session_message(
    session_id: str,
    body: SessionMessageRequest,
    relay: ChatRelay = Depends(get_relay),
    titles: TitleGenerator = Depends(get_title_generator),
):
    """Append a user turn and stream the assistant reply into the session."""
    session = await get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    if not body.content.strip() and not body.images:
        raise HTTPException(status_code=400, detail="Message is empty")

    await activate_session(session_id)
    user_turn = await add_turn(
        session_id, ChatTurn(role="user", content=body.content, images=body.images)
    )

    try:
        chunks = await relay.open(session.turns + [user_turn], body.provider)
    except RelayError as e:
        logger.warning("Session %s message rejected: %s", session_id[:8], e.message)
        return _error_response(e)
    except Exception:
        logger.exception("Chat error for session %s", session_id[:8])
        return PlainTextResponse(GENERIC_FAILURE, status_code=500)

    assistant_turn = await add_turn(session_id, ChatTurn(role="assistant", content=""))

    background = None
    if session.title == NEW_CHAT_TITLE:
        background = BackgroundTask(_generate_session_title, session_id, body.provider, titles)

    return StreamingResponse(
        _stream_into_turn(session_id, assistant_turn.id, chunks),
        media_type=TEXT_STREAM,
        background=background,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ec2-chat-service",
        "version": "1.0.0"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

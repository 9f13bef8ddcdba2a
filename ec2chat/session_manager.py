"""
Session manager for CRUD operations on chat sessions and turns.
"""
import uuid
import json
from typing import Optional, List
from ec2chat.database import get_db
from ec2chat.models import ChatTurn, ConversationSession, NEW_CHAT_TITLE, SessionSummary


def _turn_from_row(row) -> ChatTurn:
    images = json.loads(row["images"]) if row["images"] else None
    return ChatTurn(id=row["id"], role=row["role"], content=row["content"], images=images)


async def create_session() -> str:
    """Create a new session, make it the active one and return its ID."""
    session_id = str(uuid.uuid4())

    async with get_db() as db:
        await db.execute("UPDATE sessions SET status = 'inactive' WHERE status = 'active'")
        await db.execute(
            "INSERT INTO sessions (id, title, status) VALUES (?, ?, ?)",
            (session_id, NEW_CHAT_TITLE, "active")
        )
        await db.commit()

    return session_id


async def list_sessions() -> List[SessionSummary]:
    """All sessions, newest first."""
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT id, title, status, created_at FROM sessions "
            "ORDER BY created_at DESC, rowid DESC"
        )
        rows = await cursor.fetchall()
        return [SessionSummary(**dict(row)) for row in rows]


async def get_session(session_id: str) -> Optional[ConversationSession]:
    """Get session with all turns in order."""
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT * FROM sessions WHERE id = ?",
            (session_id,)
        )
        row = await cursor.fetchone()

        if not row:
            return None

        session_data = dict(row)

        cursor = await db.execute(
            "SELECT * FROM turns WHERE session_id = ? ORDER BY seq ASC",
            (session_id,)
        )
        turn_rows = await cursor.fetchall()

        turns = [_turn_from_row(row) for row in turn_rows]

        return ConversationSession(**session_data, turns=turns)


async def get_active_session() -> Optional[ConversationSession]:
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT id FROM sessions WHERE status = 'active' LIMIT 1"
        )
        row = await cursor.fetchone()

    if not row:
        return None
    return await get_session(row["id"])


async def activate_session(session_id: str) -> bool:
    """Make *session_id* the only active session."""
    if not await session_exists(session_id):
        return False

    async with get_db() as db:
        await db.execute(
            "UPDATE sessions SET status = CASE WHEN id = ? THEN 'active' ELSE 'inactive' END",
            (session_id,)
        )
        await db.commit()
        return True


async def delete_session(session_id: str) -> Optional[str]:
    """Delete a session and return the ID of the session now active.

    Deleting the active session activates the newest remaining one, or a
    fresh empty session when nothing is left.
    """
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT status FROM sessions WHERE id = ?",
            (session_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        was_active = row["status"] == "active"

        await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await db.commit()

    if was_active:
        remaining = await list_sessions()
        if not remaining:
            return await create_session()
        await activate_session(remaining[0].id)
        return remaining[0].id

    active = await get_active_session()
    return active.id if active else None


async def update_session_activity(session_id: str):
    """Update last_activity timestamp for a session."""
    async with get_db() as db:
        await db.execute(
            "UPDATE sessions SET last_activity = CURRENT_TIMESTAMP WHERE id = ?",
            (session_id,)
        )
        await db.commit()


async def add_turn(session_id: str, turn: ChatTurn) -> ChatTurn:
    """Append a turn to a session."""
    images = json.dumps(turn.images) if turn.images else None
    async with get_db() as db:
        await db.execute(
            "INSERT INTO turns (id, session_id, role, content, images) VALUES (?, ?, ?, ?, ?)",
            (turn.id, session_id, turn.role, turn.content, images)
        )
        await db.commit()
    return turn


async def update_turn_content(turn_id: str, content: str):
    """Replace the streamed content of an assistant turn."""
    async with get_db() as db:
        await db.execute(
            "UPDATE turns SET content = ? WHERE id = ?",
            (content, turn_id)
        )
        await db.commit()


async def set_title_once(session_id: str, title: str) -> bool:
    """Replace the placeholder title; a title already set is kept."""
    async with get_db() as db:
        cursor = await db.execute(
            "UPDATE sessions SET title = ? WHERE id = ? AND title = ?",
            (title, session_id, NEW_CHAT_TITLE)
        )
        await db.commit()
        return cursor.rowcount > 0


async def session_exists(session_id: str) -> bool:
    """Check if a session exists."""
    async with get_db() as db:
        cursor = await db.execute(
            "SELECT id FROM sessions WHERE id = ?",
            (session_id,)
        )
        row = await cursor.fetchone()
        return row is not None

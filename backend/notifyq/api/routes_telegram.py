from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..models import TelegramChat
from .deps import get_db

router = APIRouter(prefix="/integrations/telegram", tags=["telegram"])


class TelegramRegisterRequest(BaseModel):
    chat_id: int
    chat_type: str | None = "private"
    username: str | None = None
    title: str | None = None
    enabled: bool | None = None


class TelegramRegisterResponse(BaseModel):
    ok: bool
    chat_id: int
    enabled: bool


class TelegramChatItem(BaseModel):
    chat_id: int
    chat_type: str
    username: str | None
    title: str | None
    enabled: bool
    first_seen_at: datetime
    last_seen_at: datetime


@router.post("/register", response_model=TelegramRegisterResponse)
def register_chat(payload: TelegramRegisterRequest, db: Session = Depends(get_db)):
    chat = db.query(TelegramChat).filter(TelegramChat.chat_id == payload.chat_id).first()

    now = utcnow()

    if not chat:
        chat = TelegramChat(
            chat_id=payload.chat_id,
            chat_type=payload.chat_type or "private",
            username=payload.username,
            title=payload.title,
            enabled=True if payload.enabled is None else payload.enabled,
            first_seen_at=now,
            last_seen_at=now,
        )
        db.add(chat)
    else:
        chat.chat_type = payload.chat_type or chat.chat_type
        chat.username = payload.username
        chat.title = payload.title
        chat.last_seen_at = now
        # leave enabled as-is unless explicitly given
        if payload.enabled is not None:
            chat.enabled = payload.enabled

    db.commit()
    db.refresh(chat)

    return TelegramRegisterResponse(ok=True, chat_id=chat.chat_id, enabled=chat.enabled)


@router.get("/chats", response_model=list[TelegramChatItem])
def list_chats(db: Session = Depends(get_db)):
    chats = db.query(TelegramChat).order_by(TelegramChat.first_seen_at, TelegramChat.id).all()
    return [
        TelegramChatItem(
            chat_id=c.chat_id,
            chat_type=c.chat_type,
            username=c.username,
            title=c.title,
            enabled=c.enabled,
            first_seen_at=c.first_seen_at,
            last_seen_at=c.last_seen_at,
        )
        for c in chats
    ]

from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from ..core.service import NotificationService


def get_service(request: Request) -> NotificationService:
    return request.app.state.service


# FastAPI dependency
def get_db(request: Request) -> Iterator[Session]:
    db = get_service(request).session_factory()
    try:
        yield db
    finally:
        db.close()

"""FastAPI dependencies for caller context and database access."""

from typing import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from formengine.db.session import SessionLocal
from formengine.schemas.submissions import UserContext


# Identity headers set by the authenticating gateway in front of this service
USER_ID_HEADER = "X-User-Id"
COMPANY_ID_HEADER = "X-Company-Id"
USER_ROLE_HEADER = "X-User-Role"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_context(
    company_id: str | None = Header(None, alias=COMPANY_ID_HEADER),
    user_id: str | None = Header(None, alias=USER_ID_HEADER),
    role: str | None = Header(None, alias=USER_ROLE_HEADER),
) -> UserContext:
    """
    Read-only caller context.

    Raises:
        HTTPException 401: no company header
    """
    if not company_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return UserContext(user_id=user_id, company_id=company_id, role=role or "member")

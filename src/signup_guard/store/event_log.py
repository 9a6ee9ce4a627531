"""Append-only event log keyed by account id and event type."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signup_guard.db.database import Base
from signup_guard.db.models import AntifraudEvent
from signup_guard.schemas import EventType

logger = logging.getLogger("signup-guard-events")


class EventLog:
    """Writes and reads antifraud events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def claim(
        self,
        account_id: str,
        event_type: EventType,
        payload: dict,
        rows: list[Base] | None = None,
    ) -> bool:
        """Insert a unique event together with ``rows`` in one transaction.

        Returns:
            True if this call wrote the event, False if an event of that type
            already exists for the account or a row conflicts (nothing is
            written then).
        """
        async with self._session_factory() as session:
            session.add(
                AntifraudEvent(
                    account_id=account_id,
                    event_type=event_type.value,
                    payload=payload,
                )
            )
            # Flush the event first so a duplicate fails before anything else
            try:
                await session.flush()
                session.add_all(rows or [])
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info(f"{event_type.value} not recorded for account {account_id}: {e.orig!r}")
                return False

        return True

    async def append(
        self, event_type: EventType, payload: dict, account_id: str | None = None
    ) -> None:
        """Append an event."""
        async with self._session_factory() as session:
            session.add(
                AntifraudEvent(
                    account_id=account_id,
                    event_type=event_type.value,
                    payload=payload,
                )
            )
            await session.commit()

    async def get(self, account_id: str, event_type: EventType) -> AntifraudEvent | None:
        """Get the event of a type for an account."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AntifraudEvent)
                .where(AntifraudEvent.account_id == account_id)
                .where(AntifraudEvent.event_type == event_type.value)
            )
            return result.scalar_one_or_none()

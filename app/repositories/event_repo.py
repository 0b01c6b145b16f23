# app/repositories/event_repo.py
import uuid

from sqlmodel import Session, select

from app.models.order import OrderEvent


class OrderEventRepository:
    """
    Data access layer for the append-only `order_events` log.

    Rows are only ever inserted; nothing here updates or deletes.
    """

    def insert(self, session: Session, event: OrderEvent) -> OrderEvent:
        """Insert one event row and return it with its id populated."""
        session.add(event)
        session.commit()
        session.refresh(event)
        return event

    def get_by_id(self, session: Session, event_id: uuid.UUID) -> OrderEvent | None:
        return session.get(OrderEvent, event_id)

    def list_for_order(self, session: Session, order_id: uuid.UUID) -> list[OrderEvent]:
        """Full history of an order, oldest first."""
        stmt = (
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.created_at.asc())
        )
        return list(session.exec(stmt).all())

    def has_event(self, session: Session, order_id: uuid.UUID, event_type: str) -> bool:
        stmt = select(OrderEvent.id).where(
            OrderEvent.order_id == order_id,
            OrderEvent.event_type == event_type,
        )
        return session.exec(stmt).first() is not None

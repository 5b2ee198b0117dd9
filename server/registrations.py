"""Event registrations: one per user and event, bounded by the event capacity."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import AlreadyRegisteredError, EventFullError, NotAuthenticatedError, NotFoundError
from models import Event, EventRegistration, db
from store_errors import StoreErrorKind, classify_store_error, translate_store_error

logger = logging.getLogger(__name__)


def registrations_count(event_id: int) -> int:
    return EventRegistration.query.filter_by(event_id=event_id, status='confirmed').count()


def describe_event(event: Event, user_id: Optional[str] = None) -> dict:
    data = event.to_dict()
    taken = registrations_count(event.id)
    data['registrations_count'] = taken
    data['spots_left'] = max(event.capacity - taken, 0) if event.capacity is not None else None
    if user_id:
        data['is_registered'] = EventRegistration.query.filter_by(
            event_id=event.id, user_id=user_id).first() is not None
    return data


def register(user_id: Optional[str], event_id: int) -> EventRegistration:
    if not user_id:
        raise NotAuthenticatedError("Log in to register for events")

    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if EventRegistration.query.filter_by(event_id=event_id, user_id=user_id).first():
        raise AlreadyRegisteredError()
    if event.capacity is not None and registrations_count(event_id) >= event.capacity:
        raise EventFullError()

    registration = EventRegistration(user_id=user_id, event_id=event_id)
    try:
        db.session.add(registration)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        if classify_store_error(e) is StoreErrorKind.UNIQUE_VIOLATION:
            raise AlreadyRegisteredError() from e
        raise translate_store_error(e) from e

    logger.info(f"✅ User {user_id} registered for event {event_id}")
    return registration


def cancel(user_id: Optional[str], event_id: int) -> None:
    if not user_id:
        raise NotAuthenticatedError()
    registration = EventRegistration.query.filter_by(event_id=event_id, user_id=user_id).first()
    if registration is None:
        raise NotFoundError("Registration not found")
    db.session.delete(registration)
    db.session.commit()
    logger.info(f"User {user_id} cancelled registration for event {event_id}")

"""
Vote lifecycle: one vote per (user, nominee), removable by its owner for two
hours after it was cast.

Nominee.votes_count is maintained by the votes_count triggers installed by
provisioning.ensure_schema(), so it changes in the same statement as the vote
row and never has to be touched here.
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from errors import (
    AlreadyVotedError,
    NotAuthenticatedError,
    NotFoundError,
    ValidationError,
    VoteLimitError,
    VoteLockedError,
    VotingClosedError,
)
from models import Config, Nominee, Vote, db, parse_datetime, utcnow
from store_errors import StoreErrorKind, classify_store_error, retry_db_operation

logger = logging.getLogger(__name__)

VOTE_WINDOW = timedelta(hours=2)
VOTING_SETTINGS_KEY = 'voting_settings'

DEFAULT_VOTING_SETTINGS = {
    'voting_enabled': True,
    'max_votes_per_user': None,
    'max_votes_per_category': None,
    'show_results': True,
    'voting_start_date': None,
    'voting_end_date': None,
}


class VoteState(Enum):
    NO_VOTE = 'no_vote'
    REMOVABLE = 'removable'
    LOCKED = 'locked'


def can_unvote(created_at: datetime, now: datetime) -> bool:
    return now - created_at < VOTE_WINDOW


def remaining_minutes(created_at: datetime, now: datetime) -> int:
    """Whole minutes left to remove a vote, 0 once the window has elapsed"""
    remaining = VOTE_WINDOW - (now - created_at)
    if remaining <= timedelta(0):
        return 0
    return int(remaining.total_seconds() // 60)


def vote_state(vote: Optional[Vote], now: datetime) -> VoteState:
    if vote is None:
        return VoteState.NO_VOTE
    if can_unvote(vote.created_at, now):
        return VoteState.REMOVABLE
    return VoteState.LOCKED


def describe_vote(vote: Optional[Vote], now: datetime) -> dict:
    """Vote payload with the state the UI needs to show or hide the removal action"""
    state = vote_state(vote, now)
    if vote is None:
        return {'state': state.value, 'has_voted': False, 'can_unvote': False, 'remaining_minutes': 0}
    data = vote.to_dict()
    data.update({
        'state': state.value,
        'has_voted': True,
        'can_unvote': state is VoteState.REMOVABLE,
        'remaining_minutes': remaining_minutes(vote.created_at, now),
        'unvote_deadline': (vote.created_at + VOTE_WINDOW).isoformat(),
    })
    return data


def find_vote(user_id: str, nominee_id: int) -> Optional[Vote]:
    return Vote.query.filter_by(user_id=user_id, nominee_id=nominee_id).first()


def get_voting_settings() -> dict:
    """Stored voting settings merged over the defaults"""
    row = retry_db_operation(lambda: Config.query.filter_by(key=VOTING_SETTINGS_KEY).first(),
                             max_retries=2, delay=0.3, on_retry=db.session.rollback)
    settings = dict(DEFAULT_VOTING_SETTINGS)
    if row and isinstance(row.value, dict):
        settings.update(row.value)
    return settings


def clean_voting_settings(data: Optional[dict], current: Optional[dict] = None) -> dict:
    """
    Validate a partial voting settings update; unknown keys are ignored.
    Dates missing from the update are checked against the ones in current.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid request data")

    cleaned = {}
    errors = {}
    for key, value in data.items():
        if key not in DEFAULT_VOTING_SETTINGS:
            continue
        try:
            if key in ('voting_enabled', 'show_results'):
                if not isinstance(value, bool):
                    raise ValueError("must be true or false")
            elif key in ('max_votes_per_user', 'max_votes_per_category'):
                if value is None or value == '':
                    value = None
                elif isinstance(value, bool):
                    raise ValueError("must be a whole number")
                else:
                    value = int(value)
                    if value < 1:
                        raise ValueError("must be at least 1")
            elif value is None or value == '':
                value = None
            else:
                value = parse_datetime(value).isoformat()
        except (TypeError, ValueError) as e:
            errors[key] = str(e) or "invalid value"
            continue
        cleaned[key] = value

    merged = dict(current or {})
    merged.update(cleaned)
    start, end = merged.get('voting_start_date'), merged.get('voting_end_date')
    if start and end and parse_datetime(start) >= parse_datetime(end):
        errors['voting_end_date'] = "must be after the start date"
    if errors:
        raise ValidationError("Invalid voting settings", fields=errors)
    return cleaned


def save_voting_settings(values: dict) -> dict:
    settings = dict(DEFAULT_VOTING_SETTINGS)
    row = Config.query.filter_by(key=VOTING_SETTINGS_KEY).first()
    if row and isinstance(row.value, dict):
        settings.update(row.value)
    settings.update(values)
    if row:
        row.value = settings
    else:
        db.session.add(Config(key=VOTING_SETTINGS_KEY, value=settings))
    db.session.commit()
    logger.info(f"✅ Voting settings saved: {settings}")
    return settings


def check_voting_open(settings: dict, now: datetime) -> None:
    if not settings.get('voting_enabled', True):
        raise VotingClosedError()
    start = settings.get('voting_start_date')
    end = settings.get('voting_end_date')
    if start and now < parse_datetime(start):
        raise VotingClosedError("Voting has not started yet.")
    if end and now > parse_datetime(end):
        raise VotingClosedError("Voting session is closed.")


def check_vote_limits(settings: dict, user_id: str, nominee: Nominee) -> None:
    max_per_user = settings.get('max_votes_per_user')
    if max_per_user:
        total = Vote.query.filter_by(user_id=user_id).count()
        if total >= int(max_per_user):
            raise VoteLimitError(f"You can cast at most {max_per_user} votes")

    max_per_category = settings.get('max_votes_per_category')
    if max_per_category:
        in_category = Vote.query.join(Nominee, Vote.nominee_id == Nominee.id).filter(
            Vote.user_id == user_id,
            Nominee.category == nominee.category
        ).count()
        if in_category >= int(max_per_category):
            raise VoteLimitError(f"You can cast at most {max_per_category} vote(s) in {nominee.category}")


def cast_vote(user_id: Optional[str], nominee_id: int, now: Optional[datetime] = None) -> Vote:
    """Record a vote; AlreadyVotedError if this user already voted for this nominee"""
    if not user_id:
        raise NotAuthenticatedError("Log in to vote")
    now = now or utcnow()

    nominee = db.session.get(Nominee, nominee_id)
    if nominee is None:
        raise NotFoundError("Nominee not found")

    settings = get_voting_settings()
    check_voting_open(settings, now)

    existing = find_vote(user_id, nominee_id)
    if existing:
        raise AlreadyVotedError(vote=describe_vote(existing, now))

    check_vote_limits(settings, user_id, nominee)

    vote = Vote(user_id=user_id, nominee_id=nominee_id, created_at=now)
    try:
        db.session.add(vote)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        if classify_store_error(e) is StoreErrorKind.UNIQUE_VIOLATION:
            logger.info(f"Duplicate vote rejected by constraint: user {user_id}, nominee {nominee_id}")
            raise AlreadyVotedError() from e
        raise

    logger.info(f"✅ Vote recorded: user {user_id}, nominee {nominee_id}")
    return vote


def remove_vote(user_id: Optional[str], vote_id: int, now: Optional[datetime] = None) -> int:
    """Delete the caller's own vote while the removal window is open. Returns the nominee id."""
    if not user_id:
        raise NotAuthenticatedError()
    now = now or utcnow()

    vote = Vote.query.filter_by(id=vote_id, user_id=user_id).first()
    if vote is None:
        raise NotFoundError("Vote not found")
    if not can_unvote(vote.created_at, now):
        raise VoteLockedError(remaining_minutes=0)

    return _delete_vote(vote)


def admin_delete_vote(vote_id: int) -> int:
    """Admin removal, not bound by the two-hour window"""
    vote = db.session.get(Vote, vote_id)
    if vote is None:
        raise NotFoundError("Vote not found")
    return _delete_vote(vote)


def _delete_vote(vote: Vote) -> int:
    vote_id, user_id, nominee_id = vote.id, vote.user_id, vote.nominee_id
    try:
        db.session.delete(vote)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info(f"✅ Vote {vote_id} removed: user {user_id}, nominee {nominee_id}")
    return nominee_id


def user_votes(user_id: str, now: Optional[datetime] = None) -> List[dict]:
    """The caller's votes, newest first, each with its nominee and removal state"""
    now = now or utcnow()

    def query():
        return Vote.query.filter_by(user_id=user_id).order_by(Vote.created_at.desc()).all()

    include_votes = bool(get_voting_settings().get('show_results', True))
    votes = []
    for vote in retry_db_operation(query, max_retries=2, delay=0.3, on_retry=db.session.rollback):
        data = describe_vote(vote, now)
        data['nominee'] = vote.nominee.to_dict(include_votes=include_votes) if vote.nominee else None
        votes.append(data)
    return votes


def recount_votes() -> int:
    """Recompute every nominee's votes_count from the vote rows. Returns how many were corrected."""
    counts = dict(
        db.session.query(Vote.nominee_id, func.count(Vote.id)).group_by(Vote.nominee_id).all()
    )
    corrected = 0
    for nominee in Nominee.query.all():
        actual = counts.get(nominee.id, 0)
        if nominee.votes_count != actual:
            logger.warning(f"⚠ votes_count drift on nominee {nominee.id}: {nominee.votes_count} -> {actual}")
            nominee.votes_count = actual
            corrected += 1
    db.session.commit()
    return corrected

"""
Admin dashboard aggregates.

Each query runs on its own worker inside its own application context and is
bounded by a timeout. A query that fails or runs late contributes its
fallback value and an entry in `errors`; the rest of the payload is still
returned.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Tuple

from sqlalchemy import func

from models import Category, Nominee, UserProfile, Vote, db, utcnow

logger = logging.getLogger(__name__)

QUERY_TIMEOUT = 5.0

Query = Tuple[Callable[[], Any], Any]


def _run_fenced(app, queries: Dict[str, Query], timeout: float) -> dict:
    def in_context(query):
        with app.app_context():
            try:
                return query()
            finally:
                db.session.remove()

    results = {}
    errors = {}
    executor = ThreadPoolExecutor(max_workers=len(queries), thread_name_prefix='dashboard')
    try:
        futures = {name: executor.submit(in_context, query) for name, (query, _) in queries.items()}
        for name, future in futures.items():
            fallback = queries[name][1]
            try:
                results[name] = future.result(timeout=timeout)
            except FutureTimeoutError:
                logger.warning(f"⚠ Dashboard query {name!r} timed out after {timeout}s")
                results[name] = fallback
                errors[name] = f"timed out after {timeout}s"
            except Exception as e:
                logger.error(f"❌ Dashboard query {name!r} failed: {e}", exc_info=True)
                results[name] = fallback
                errors[name] = str(e)
    finally:
        # Late queries finish on their own; the response does not wait for them
        executor.shutdown(wait=False)

    results['errors'] = errors
    return results


def _count(model) -> int:
    return db.session.query(func.count(model.id)).scalar() or 0


def _top_nominees():
    rows = Nominee.query.order_by(Nominee.votes_count.desc(), Nominee.name).limit(5).all()
    return [n.to_dict() for n in rows]


def _recent_votes():
    rows = db.session.query(Vote, Nominee).join(Nominee, Vote.nominee_id == Nominee.id) \
        .order_by(Vote.created_at.desc()).limit(5).all()
    recent = []
    for vote, nominee in rows:
        data = vote.to_dict()
        data['nominee_name'] = nominee.name
        data['category'] = nominee.category
        recent.append(data)
    return recent


def dashboard_stats(app, timeout: float = QUERY_TIMEOUT) -> dict:
    """Totals, top 5 nominees and the 5 latest votes"""
    return _run_fenced(app, {
        'total_nominees': (lambda: _count(Nominee), 0),
        'total_users': (lambda: _count(UserProfile), 0),
        'total_votes': (lambda: _count(Vote), 0),
        'total_categories': (lambda: _count(Category), 0),
        'top_nominees': (_top_nominees, []),
        'recent_votes': (_recent_votes, []),
    }, timeout)


def _per_category():
    nominees = dict(
        db.session.query(Nominee.category, func.count(Nominee.id)).group_by(Nominee.category).all()
    )
    votes = dict(
        db.session.query(Nominee.category, func.count(Vote.id))
        .join(Vote, Vote.nominee_id == Nominee.id)
        .group_by(Nominee.category).all()
    )
    names = [c.name for c in Category.query.order_by(Category.name).all()]
    for name in nominees:
        if name not in names:
            names.append(name)
    return [
        {'category': name, 'nominees': nominees.get(name, 0), 'votes': votes.get(name, 0)}
        for name in names
    ]


def _votes_per_day(days: int = 7):
    today = utcnow().date()
    start = today - timedelta(days=days - 1)
    day = func.date(Vote.created_at)
    rows = db.session.query(day, func.count(Vote.id)) \
        .filter(Vote.created_at >= datetime.combine(start, time.min)) \
        .group_by(day).all()
    counts = {str(d): c for d, c in rows}
    return [
        {'date': (start + timedelta(days=i)).isoformat(),
         'votes': counts.get((start + timedelta(days=i)).isoformat(), 0)}
        for i in range(days)
    ]


def statistics(app, timeout: float = QUERY_TIMEOUT) -> dict:
    """Per-category totals and the daily vote series for the last week"""
    return _run_fenced(app, {
        'categories': (_per_category, []),
        'votes_per_day': (_votes_per_day, []),
    }, timeout)

"""
Database models using SQLAlchemy for PostgreSQL support.
Falls back to SQLite if DATABASE_URL is not set.
"""
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint
from datetime import datetime, timezone

db = SQLAlchemy()

ROLES = ('admin', 'user')


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the TIMESTAMP columns store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class Category(db.Model):
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'icon': self.icon,
            'created_at': _iso(self.created_at)
        }


class Nominee(db.Model):
    __tablename__ = 'nominees'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    title = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    # Matched against Category.name, not a foreign key
    category = db.Column(db.String(255), nullable=False, index=True)
    image_url = db.Column(db.Text, nullable=True)
    avatar_url = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=True)
    votes_count = db.Column(db.Integer, nullable=False, default=0, server_default='0')
    created_at = db.Column(db.DateTime, default=utcnow)

    votes = db.relationship('Vote', backref='nominee', cascade='all, delete-orphan')

    def to_dict(self, include_votes: bool = True):
        data = {
            'id': self.id,
            'name': self.name,
            'title': self.title,
            'description': self.description,
            'category': self.category,
            'image_url': self.image_url,
            'avatar_url': self.avatar_url,
            'tags': self.tags or [],
            'created_at': _iso(self.created_at)
        }
        if include_votes:
            data['votes_count'] = self.votes_count
        return data


class Vote(db.Model):
    __tablename__ = 'votes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    nominee_id = db.Column(db.Integer, db.ForeignKey('nominees.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint('user_id', 'nominee_id', name='votes_user_nominee_key'),)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'nominee_id': self.nominee_id,
            'created_at': _iso(self.created_at)
        }


class Event(db.Model):
    __tablename__ = 'events'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    date = db.Column(db.DateTime, nullable=False)
    location = db.Column(db.String(255), nullable=True)
    image_url = db.Column(db.Text, nullable=True)
    capacity = db.Column(db.Integer, nullable=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    registrations = db.relationship('EventRegistration', backref='event', cascade='all, delete-orphan')

    __table_args__ = (CheckConstraint('capacity IS NULL OR capacity >= 0', name='events_capacity_check'),)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'date': _iso(self.date),
            'location': self.location,
            'image_url': self.image_url,
            'capacity': self.capacity,
            'is_featured': self.is_featured,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class EventRegistration(db.Model):
    __tablename__ = 'event_registrations'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('events.id', ondelete='CASCADE'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='confirmed')
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (db.UniqueConstraint('user_id', 'event_id', name='event_registrations_user_event_key'),)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'event_id': self.event_id,
            'status': self.status,
            'created_at': _iso(self.created_at)
        }


class ArtisticGenre(db.Model):
    __tablename__ = 'artistic_genres'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    members = db.relationship('AcademyMember', backref='genre', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'icon': self.icon,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class AcademyMember(db.Model):
    __tablename__ = 'academy_members'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    title = db.Column(db.String(255), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    genre_id = db.Column(db.Integer, db.ForeignKey('artistic_genres.id'), nullable=False, index=True)
    photo_url = db.Column(db.Text, nullable=True)
    social_media = db.Column(db.JSON, nullable=True)
    achievements = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'title': self.title,
            'bio': self.bio,
            'genre_id': self.genre_id,
            'photo_url': self.photo_url,
            'social_media': self.social_media,
            'achievements': self.achievements,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Content(db.Model):
    """Editable page copy, one JSON document per page section"""
    __tablename__ = 'content'

    id = db.Column(db.Integer, primary_key=True)
    section = db.Column(db.String(100), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'section': self.section,
            'title': self.title,
            'content': self.content or {},
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Config(db.Model):
    """Persistent site configuration (voting settings and the like)"""
    __tablename__ = 'config'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'key': self.key,
            'value': self.value,
            'updated_at': _iso(self.updated_at)
        }


class UserProfile(db.Model):
    __tablename__ = 'user_profiles'

    # Same identifier the auth service issues
    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='user')
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (CheckConstraint("role IN ('admin', 'user')", name='user_profiles_role_check'),)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'created_at': _iso(self.created_at)
        }


def parse_datetime(value) -> datetime:
    """Parse an ISO-8601 value (date or datetime, optional Z/offset) into naive UTC"""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

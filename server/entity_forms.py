"""
Generic create/update/delete forms for the admin back-office.

Every admin-managed table is described by an EntityForm: a model plus a list
of Field definitions. The form cleans incoming JSON against the fields,
fills in slugs, runs the entity's delete guards and hooks, and maps database
errors to API errors. The admin routes use nothing else.
"""
import json
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from errors import CategoryInUseError, ConstraintViolationError, NotFoundError, ValidationError
from models import AcademyMember, ArtisticGenre, Category, Content, Event, Nominee, db, parse_datetime
from store_errors import translate_store_error

logger = logging.getLogger(__name__)

FIELD_TYPES = ('str', 'text', 'slug', 'int', 'bool', 'datetime', 'list', 'json')
SLUG_RE = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')


def slugify(value: str) -> str:
    """Lowercase, strip diacritics, and join the remaining alphanumeric runs with hyphens"""
    text = unicodedata.normalize('NFD', str(value or '').lower())
    text = ''.join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r'[^a-z0-9]+', '-', text)
    return text.strip('-')


@dataclass
class Field:
    name: str
    type: str = 'str'
    required: bool = False
    default: Any = None
    choices: Optional[tuple] = None
    max_length: Optional[int] = None
    min_value: Optional[int] = None
    references: Any = None
    label: Optional[str] = None

    def describe(self) -> dict:
        return {
            'name': self.name,
            'type': self.type,
            'required': self.required,
            'default': self.default,
            'choices': list(self.choices) if self.choices else None,
            'label': self.label or self.name.replace('_', ' ').capitalize(),
        }

    def coerce(self, value):
        """Convert a submitted value to the column's Python value; None means empty"""
        if value is None:
            return None
        if self.type in ('str', 'text', 'slug'):
            value = str(value).strip()
            if not value:
                return None
            if self.max_length and len(value) > self.max_length:
                raise ValueError(f"must be at most {self.max_length} characters")
            if self.type == 'slug' and not SLUG_RE.match(value):
                raise ValueError("must contain only lowercase letters, numbers and hyphens")
            return value
        if self.type == 'int':
            if isinstance(value, str) and not value.strip():
                return None
            if isinstance(value, bool):
                raise ValueError("must be a whole number")
            number = int(value)
            if self.min_value is not None and number < self.min_value:
                raise ValueError(f"must be at least {self.min_value}")
            return number
        if self.type == 'bool':
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ('1', 'true', 'on', 'yes')
        if self.type == 'datetime':
            if isinstance(value, str) and not value.strip():
                return None
            return parse_datetime(value)
        if self.type == 'list':
            if isinstance(value, str):
                separator = '\n' if '\n' in value else ','
                value = value.split(separator)
            if not isinstance(value, (list, tuple)):
                raise ValueError("must be a list")
            items = [str(item).strip() for item in value if str(item).strip()]
            return items or None
        if self.type == 'json':
            if isinstance(value, str):
                value = json.loads(value) if value.strip() else None
            if value is not None and not isinstance(value, dict):
                raise ValueError("must be an object")
            return value
        return value


class EntityForm:
    def __init__(self, name: str, model, fields: List[Field], slug_source: Optional[str] = None,
                 order_by=None, before_delete: Optional[Callable] = None,
                 before_update: Optional[Callable] = None, after_change: Optional[Callable] = None):
        self.name = name
        self.model = model
        self.fields = {f.name: f for f in fields}
        self.slug_source = slug_source
        self.order_by = order_by
        self.before_delete = before_delete
        self.before_update = before_update
        self.after_change = after_change

    def schema(self) -> dict:
        return {
            'entity': self.name,
            'fields': [f.describe() for f in self.fields.values()],
            'slug_source': self.slug_source,
        }

    def clean(self, data: Optional[dict], partial: bool = False) -> dict:
        """Validate submitted data. With partial=True only the submitted fields are checked."""
        if not isinstance(data, dict):
            raise ValidationError("Invalid request data")

        cleaned = {}
        errors = {}
        for name, field in self.fields.items():
            if partial and name not in data:
                continue
            try:
                value = field.coerce(data.get(name))
            except (TypeError, ValueError) as e:
                errors[name] = str(e) or "invalid value"
                continue

            if value is None and field.type == 'slug' and self.slug_source and not partial:
                value = slugify(data.get(self.slug_source) or '') or None
            if value is None and field.default is not None and not partial:
                value = field.default
            if value is None and field.required:
                errors[name] = "This field is required"
                continue
            if value is not None and field.choices and value not in field.choices:
                errors[name] = f"must be one of: {', '.join(map(str, field.choices))}"
                continue
            if value is not None and field.references is not None \
                    and db.session.get(field.references, value) is None:
                errors[name] = "references a record that does not exist"
                continue
            cleaned[name] = value

        if errors:
            raise ValidationError("Please correct the highlighted fields", fields=errors)
        return cleaned

    def list(self) -> list:
        query = self.model.query
        if self.order_by is not None:
            query = query.order_by(self.order_by)
        return query.all()

    def get(self, entity_id: int):
        obj = db.session.get(self.model, entity_id)
        if obj is None:
            raise NotFoundError(f"{self.name} {entity_id} not found")
        return obj

    def create(self, data: dict):
        cleaned = self.clean(data)
        obj = self.model(**cleaned)
        db.session.add(obj)
        self._commit(f"create {self.name}")
        logger.info(f"✅ Created {self.name} {obj.id}")
        if self.after_change:
            self.after_change(obj, 'create', None)
        return obj

    def update(self, entity_id: int, data: dict):
        obj = self.get(entity_id)
        cleaned = self.clean(data, partial=True)
        previous = obj.to_dict()
        if self.before_update:
            self.before_update(obj, cleaned)
        for name, value in cleaned.items():
            setattr(obj, name, value)
        self._commit(f"update {self.name} {entity_id}")
        logger.info(f"✅ Updated {self.name} {entity_id}: {sorted(cleaned)}")
        if self.after_change:
            self.after_change(obj, 'update', previous)
        return obj

    def delete(self, entity_id: int) -> dict:
        obj = self.get(entity_id)
        if self.before_delete:
            self.before_delete(obj)
        snapshot = obj.to_dict()
        db.session.delete(obj)
        self._commit(f"delete {self.name} {entity_id}")
        logger.info(f"✅ Deleted {self.name} {entity_id}")
        if self.after_change:
            self.after_change(obj, 'delete', snapshot)
        return snapshot

    def _commit(self, action: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"❌ Failed to {action}: {e}", exc_info=True)
            raise translate_store_error(e) from e


def guard_category_delete(category: Category) -> None:
    count = Nominee.query.filter_by(category=category.name).count()
    if count:
        raise CategoryInUseError(count, category.name)


def rename_category_nominees(category: Category, cleaned: dict) -> None:
    new_name = cleaned.get('name')
    if new_name and new_name != category.name:
        moved = Nominee.query.filter_by(category=category.name).update(
            {Nominee.category: new_name}, synchronize_session=False)
        if moved:
            logger.info(f"Moving {moved} nominee(s) from category {category.name!r} to {new_name!r}")


def guard_genre_delete(genre: ArtisticGenre) -> None:
    count = genre.members.count()
    if count:
        raise ConstraintViolationError(
            f"Cannot delete genre {genre.name!r}: it has {count} academy member(s)", count=count)


def invalidate_content(content: Content, action: str, previous: Optional[dict]) -> None:
    cache = current_app.extensions.get('content_cache')
    if cache is None:
        return
    sections = {content.section}
    if previous and previous.get('section'):
        sections.add(previous['section'])
    for section in sections:
        cache.invalidate(section)


FORMS: Dict[str, EntityForm] = {
    'categories': EntityForm(
        'categories', Category,
        [
            Field('name', required=True, max_length=255),
            Field('slug', type='slug', required=True, max_length=255),
            Field('description', type='text'),
            Field('icon', max_length=255),
        ],
        slug_source='name',
        order_by=Category.name,
        before_delete=guard_category_delete,
        before_update=rename_category_nominees,
    ),
    'nominees': EntityForm(
        'nominees', Nominee,
        [
            Field('name', required=True, max_length=255),
            Field('title', max_length=255),
            Field('description', type='text'),
            Field('category', required=True, max_length=255),
            Field('image_url', type='text'),
            Field('avatar_url', type='text'),
            Field('tags', type='list'),
        ],
        order_by=Nominee.name,
    ),
    'events': EntityForm(
        'events', Event,
        [
            Field('title', required=True, max_length=255),
            Field('description', type='text'),
            Field('date', type='datetime', required=True),
            Field('location', max_length=255),
            Field('image_url', type='text'),
            Field('capacity', type='int', min_value=0),
            Field('is_featured', type='bool', default=False),
        ],
        order_by=Event.date,
    ),
    'artistic-genres': EntityForm(
        'artistic-genres', ArtisticGenre,
        [
            Field('name', required=True, max_length=255),
            Field('slug', type='slug', required=True, max_length=255),
            Field('description', type='text'),
            Field('icon', max_length=255),
        ],
        slug_source='name',
        order_by=ArtisticGenre.name,
        before_delete=guard_genre_delete,
    ),
    'academy-members': EntityForm(
        'academy-members', AcademyMember,
        [
            Field('name', required=True, max_length=255),
            Field('title', max_length=255),
            Field('bio', type='text'),
            Field('genre_id', type='int', required=True, references=ArtisticGenre),
            Field('photo_url', type='text'),
            Field('social_media', type='json'),
            Field('achievements', type='list'),
            Field('is_active', type='bool', default=True),
        ],
        order_by=AcademyMember.name,
    ),
    'content': EntityForm(
        'content', Content,
        [
            Field('section', type='slug', required=True, max_length=100),
            Field('title', required=True, max_length=255),
            Field('content', type='json', required=True),
        ],
        order_by=Content.section,
        after_change=invalidate_content,
    ),
}


def get_form(entity: str) -> EntityForm:
    form = FORMS.get(entity)
    if form is None:
        raise NotFoundError(f"Unknown entity {entity!r}")
    return form

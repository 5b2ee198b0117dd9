"""Tests for the generic back-office forms."""

from datetime import datetime

import pytest

from entity_forms import FORMS, Field, get_form, slugify
from errors import CategoryInUseError, ConstraintViolationError, NotFoundError, ValidationError
from models import AcademyMember, ArtisticGenre, Category, Nominee, Vote, db


class TestSlugify:
    @pytest.mark.parametrize("value,expected", [
        ("Música Clásica", "musica-clasica"),
        ("  Teatro & Danza  ", "teatro-danza"),
        ("--Artes---Plásticas--", "artes-plasticas"),
        ("Año 2025", "ano-2025"),
        ("", ""),
        (None, ""),
    ])
    def test_slugify(self, value, expected):
        assert slugify(value) == expected


class TestField:
    def test_int_min_value(self):
        with pytest.raises(ValueError):
            Field("capacity", type="int", min_value=0).coerce(-1)

    def test_bool_from_strings(self):
        field = Field("is_featured", type="bool")
        assert field.coerce("true") is True
        assert field.coerce("off") is False

    def test_list_from_text(self):
        assert Field("tags", type="list").coerce("pop, rock ,") == ["pop", "rock"]
        assert Field("tags", type="list").coerce("uno\ndos") == ["uno", "dos"]

    def test_json_must_be_object(self):
        with pytest.raises(ValueError):
            Field("social_media", type="json").coerce("[1, 2]")

    def test_slug_format(self):
        with pytest.raises(ValueError):
            Field("slug", type="slug").coerce("Not A Slug")


class TestCategoryForm:
    def test_create_generates_slug(self, ctx):
        category = FORMS["categories"].create({"name": "Mejor Canción"})
        assert category.slug == "mejor-cancion"

    def test_required_fields_reported(self, ctx):
        with pytest.raises(ValidationError) as exc_info:
            FORMS["categories"].create({"description": "no name"})
        assert "name" in exc_info.value.fields
        assert Category.query.count() == 0

    def test_duplicate_name_is_constraint_violation(self, ctx):
        FORMS["categories"].create({"name": "Danza"})
        with pytest.raises(ConstraintViolationError):
            FORMS["categories"].create({"name": "Danza", "slug": "danza-2"})

    def test_delete_in_use_reports_count(self, ctx, sample_data):
        with pytest.raises(CategoryInUseError) as exc_info:
            FORMS["categories"].delete(sample_data["music"])
        assert exc_info.value.count == 2
        assert exc_info.value.status_code == 409
        assert db.session.get(Category, sample_data["music"]) is not None

    def test_delete_unused(self, ctx):
        category = FORMS["categories"].create({"name": "Vacía"})
        snapshot = FORMS["categories"].delete(category.id)
        assert snapshot["name"] == "Vacía"
        assert Category.query.count() == 0

    def test_rename_moves_nominees(self, ctx, sample_data):
        FORMS["categories"].update(sample_data["theatre"], {"name": "Artes Escénicas"})
        assert Nominee.query.filter_by(category="Artes Escénicas").count() == 1
        assert Nominee.query.filter_by(category="Teatro").count() == 0

    def test_partial_update_keeps_other_fields(self, ctx, sample_data):
        FORMS["categories"].update(sample_data["music"], {"icon": "music"})
        category = db.session.get(Category, sample_data["music"])
        assert category.icon == "music"
        assert category.description == "Música popular"

    def test_get_missing(self, ctx):
        with pytest.raises(NotFoundError):
            FORMS["categories"].get(404)


class TestOtherForms:
    def test_event_date_and_capacity(self, ctx):
        event = FORMS["events"].create({"title": "Gala", "date": "2025-06-01T20:00:00Z", "capacity": "150"})
        assert event.date == datetime(2025, 6, 1, 20, 0)
        assert event.capacity == 150
        assert event.is_featured is False

        with pytest.raises(ValidationError) as exc_info:
            FORMS["events"].update(event.id, {"capacity": -5})
        assert "capacity" in exc_info.value.fields

    def test_member_requires_existing_genre(self, ctx):
        with pytest.raises(ValidationError) as exc_info:
            FORMS["academy-members"].create({"name": "Rosa", "genre_id": 99})
        assert "genre_id" in exc_info.value.fields

    def test_genre_with_members_cannot_be_deleted(self, ctx):
        genre = FORMS["artistic-genres"].create({"name": "Artes Visuales"})
        FORMS["academy-members"].create({
            "name": "Rosa",
            "genre_id": genre.id,
            "achievements": ["Premio Nacional"],
            "social_media": {"instagram": "https://instagram.com/rosa"},
        })
        with pytest.raises(ConstraintViolationError) as exc_info:
            FORMS["artistic-genres"].delete(genre.id)
        assert exc_info.value.extra["count"] == 1
        assert ArtisticGenre.query.count() == 1
        assert AcademyMember.query.one().achievements == ["Premio Nacional"]

    def test_nominee_delete_cascades_votes(self, ctx, sample_data):
        db.session.add(Vote(user_id="user-1", nominee_id=sample_data["singer"]))
        db.session.commit()
        FORMS["nominees"].delete(sample_data["singer"])
        assert Vote.query.count() == 0

    def test_content_change_invalidates_cache(self, ctx):
        cache = ctx.extensions["content_cache"]
        events = []
        cache.subscribe(events.append, section="home")
        content = FORMS["content"].create({"section": "home", "title": "Inicio", "content": {"hero_title": "Hola"}})
        FORMS["content"].update(content.id, {"content": {"hero_title": "Adiós"}})
        assert [e.section for e in events] == ["home", "home"]

    def test_unknown_entity(self):
        with pytest.raises(NotFoundError):
            get_form("votes")

    def test_schema_describes_fields(self):
        schema = FORMS["nominees"].schema()
        names = [f["name"] for f in schema["fields"]]
        assert names[:2] == ["name", "title"]
        assert "votes_count" not in names

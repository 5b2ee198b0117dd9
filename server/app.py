import io
import os
import logging
from datetime import datetime, timedelta
from typing import Optional
from flask import Flask, current_app, g, jsonify, request, send_file, session
from flask_cors import CORS
from dotenv import load_dotenv
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

import dashboard
import registrations
import votes as vote_service
from auth_client import AuthClient
from authz import admin_required, current_identity, get_role, require_identity
from content_cache import ContentCache
from entity_forms import get_form
from errors import AppError, NotAuthorizedError, NotFoundError, ValidationError, VotingClosedError
from models import (
    AcademyMember,
    ArtisticGenre,
    Category,
    Content,
    Event,
    Nominee,
    ROLES,
    UserProfile,
    Vote,
    db,
    utcnow,
)
from provisioning import ensure_schema, provision_schema, schema_status
from store_errors import retry_db_operation, translate_store_error
from tools.export_votes import EXPORT_LIMIT, build_votes_workbook, export_filename, parse_day, query_votes

# Load environment variables from .env file if present
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = ('password', 'access_token', 'refresh_token')


def build_database_uri(database_url: Optional[str]) -> str:
    """SQLAlchemy URI for DATABASE_URL, or the local SQLite file when it is not set"""
    if not database_url:
        return "sqlite:///" + os.path.join(os.path.dirname(os.path.abspath(__file__)), 'database.db')
    # Convert postgres:// to postgresql:// for SQLAlchemy
    db_url = database_url.replace('postgres://', 'postgresql://', 1)
    if db_url.startswith('postgresql') and 'sslmode' not in db_url.lower():
        separator = '&' if '?' in db_url else '?'
        db_url = f"{db_url}{separator}sslmode=require"
    return db_url


def build_cors_origins(frontend_url: Optional[str], allowed_origin: str, flask_env: str) -> list:
    origins = []
    if frontend_url:
        origins.append(frontend_url.rstrip('/'))
    origins.extend(o.strip() for o in allowed_origin.split(',') if o.strip())
    if not origins and flask_env in ('development', ''):
        # Local development: allow common localhost origins
        for host in ('localhost', '127.0.0.1'):
            for port in (3000, 5000, 5173, 5500, 8080):
                origins.append(f"http://{host}:{port}")
    return origins


def create_app(test_config: Optional[dict] = None, auth_client: Optional[AuthClient] = None) -> Flask:
    # Read environment variables
    DATABASE_URL = os.getenv("DATABASE_URL")

    if not DATABASE_URL:
        logger.warning("⚠ DATABASE_URL not found in environment.")
    else:
        logger.info(f"✅ DATABASE_URL detected: {DATABASE_URL[:40]}...")

    SECRET_KEY = os.getenv("SECRET_KEY") or os.getenv("FLASK_SECRET", "dev-secret-key-change-in-production")
    FRONTEND_URL = os.getenv("FRONTEND_URL")
    FORCE_HTTPS = os.getenv("FORCE_HTTPS", "0")
    flask_env = os.getenv('FLASK_ENV', '').lower()
    is_production = flask_env == 'production' or bool(DATABASE_URL)

    app = Flask(__name__)
    app.secret_key = SECRET_KEY

    db_url = build_database_uri(DATABASE_URL)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if db_url.startswith('postgresql'):
        # Connection pool settings for the hosted PostgreSQL (SSL drops, idle timeouts)
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "pool_size": 5,
            "max_overflow": 10,
            "connect_args": {
                "connect_timeout": 10,
            }
        }
        logger.info("✅ SQLAlchemy configured with PostgreSQL (with connection pool settings)")
    else:
        logger.info("ℹ Using SQLite for local development")

    app.config["AUTH_URL"] = os.getenv("AUTH_URL")
    app.config["AUTH_API_KEY"] = os.getenv("AUTH_API_KEY")
    app.config["CONTENT_CACHE_TTL"] = float(os.getenv("CONTENT_CACHE_TTL", "30"))
    app.config["CONTENT_FETCH_TIMEOUT"] = float(os.getenv("CONTENT_FETCH_TIMEOUT", "30"))
    app.config["DASHBOARD_QUERY_TIMEOUT"] = float(os.getenv("DASHBOARD_QUERY_TIMEOUT", "5"))
    app.config["SKIP_SCHEMA_SETUP"] = False

    # Session cookie configuration
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax" if not is_production else "None"
    app.config["SESSION_COOKIE_SECURE"] = True if (FORCE_HTTPS == "1" or is_production) else False
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_PATH"] = "/"
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=31)

    if test_config:
        app.config.update(test_config)

    db.init_app(app)

    origins = build_cors_origins(FRONTEND_URL, os.getenv('ALLOWED_ORIGIN', '').strip(), flask_env)
    CORS(app,
         supports_credentials=True,
         origins=origins,
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization", "Cache-Control", "Pragma"],
         expose_headers=["Content-Type", "Content-Disposition"],
         max_age=3600)
    logger.info(f"✅ CORS configured for origins: {origins}")

    if auth_client is None and app.config.get("AUTH_URL") and app.config.get("AUTH_API_KEY"):
        auth_client = AuthClient(app.config["AUTH_URL"], app.config["AUTH_API_KEY"])
    if auth_client is None:
        logger.warning("⚠ AUTH_URL/AUTH_API_KEY not set, sign in is disabled")
    app.extensions['auth_client'] = auth_client

    def fetch_section(section: str) -> Optional[dict]:
        # Runs on a cache worker thread
        with app.app_context():
            row = Content.query.filter_by(section=section).first()
            if row is None or not row.content:
                return None
            return dict(row.content)

    app.extensions['content_cache'] = ContentCache(
        fetch_section,
        ttl=app.config["CONTENT_CACHE_TTL"],
        timeout=app.config["CONTENT_FETCH_TIMEOUT"],
    )

    # Create missing tables and the vote counter triggers on startup
    if not app.config.get("SKIP_SCHEMA_SETUP"):
        with app.app_context():
            report = ensure_schema()
            if report.ok:
                logger.info("✅ Database schema ready")
            else:
                logger.warning(f"⚠ Database schema incomplete, run /api/admin/setup-database: {report.errors}")

    def get_auth_client() -> AuthClient:
        client = current_app.extensions.get('auth_client')
        if client is None:
            raise AppError("Authentication service is not configured", status_code=503)
        return client

    def get_json() -> dict:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def parse_id(value, name: str) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {name}", fields={name: "must be a whole number"})

    def nominee_payload(nominee: Nominee, settings: dict) -> dict:
        return nominee.to_dict(include_votes=bool(settings.get('show_results', True)))

    def public_votes_count(nominee_id: int) -> dict:
        """votes_count for a vote response, omitted while results are hidden"""
        if not vote_service.get_voting_settings().get('show_results', True):
            return {}
        nominee = db.session.get(Nominee, nominee_id)
        return {"votes_count": nominee.votes_count if nominee else None}

    def ensure_profile(user_id: str, email: Optional[str]) -> None:
        """Every signed-in identity gets a profile with the plain user role"""
        try:
            if not db.session.get(UserProfile, user_id):
                db.session.add(UserProfile(id=user_id, email=email, role='user'))
                db.session.commit()
                logger.info(f"✅ Profile created for user {user_id}")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"❌ Could not create profile for user {user_id}: {e}", exc_info=True)

    # Add request logging middleware
    @app.before_request
    def log_request_info():
        """Log incoming requests for debugging"""
        logger.info(f"📥 {request.method} {request.path} from {request.origin or request.remote_addr}")
        if request.method in ['POST', 'PUT']:
            data = request.get_json(silent=True)
            if isinstance(data, dict):
                safe_data = {k: ('***' if k in SENSITIVE_FIELDS else v) for k, v in data.items()}
                logger.debug(f"Request data: {safe_data}")

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.status_code >= 500:
            logger.error(f"❌ {request.method} {request.path}: {error.message}")
        else:
            logger.warning(f"⚠ {request.method} {request.path} -> {error.status_code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(error: SQLAlchemyError):
        db.session.rollback()
        translated = translate_store_error(error)
        logger.error(f"❌ Database error on {request.method} {request.path}: {error}", exc_info=True)
        return jsonify(translated.to_dict()), translated.status_code

    @app.errorhandler(404)
    def not_found(error):
        logger.warning(f"⚠ 404 Not Found: {request.path}")
        return jsonify({
            "success": False,
            "message": "Endpoint not found"
        }), 404

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"❌ Internal server error: {error}", exc_info=True)
        return jsonify({
            "success": False,
            "message": "Internal server error. Please try again later."
        }), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({"success": False, "message": e.description}), e.code
        logger.error(f"❌ Unhandled exception: {e}", exc_info=True)
        return jsonify({
            "success": False,
            "message": "Internal server error. Please try again later."
        }), 500

    # Public routes

    @app.get("/api/health")
    def health_check():
        """Health check endpoint to verify backend is running"""
        try:
            db.session.execute(db.text("SELECT 1"))
            db_status = "connected"
        except SQLAlchemyError as e:
            db.session.rollback()
            db_status = f"error: {str(e)[:50]}"
        return jsonify({
            "status": "ok",
            "message": "Backend is running",
            "database": db_status,
            "timestamp": datetime.utcnow().isoformat()
        }), 200

    @app.get("/api/categories")
    def list_categories():
        def query():
            counts = dict(
                db.session.query(Nominee.category, func.count(Nominee.id)).group_by(Nominee.category).all()
            )
            return [dict(c.to_dict(), nominees_count=counts.get(c.name, 0))
                    for c in Category.query.order_by(Category.name).all()]

        categories = retry_db_operation(query, on_retry=db.session.rollback)
        return jsonify({"success": True, "categories": categories})

    @app.get("/api/categories/<slug>")
    def get_category(slug):
        category = Category.query.filter_by(slug=slug).first()
        if not category:
            raise NotFoundError("Category not found")
        settings = vote_service.get_voting_settings()
        nominees = Nominee.query.filter_by(category=category.name).order_by(Nominee.name).all()
        return jsonify({
            "success": True,
            "category": category.to_dict(),
            "nominees": [nominee_payload(n, settings) for n in nominees]
        })

    @app.get("/api/nominees")
    def list_nominees():
        category = request.args.get('category', '').strip()
        settings = vote_service.get_voting_settings()

        def query():
            q = Nominee.query
            if category and category != 'all':
                q = q.filter(Nominee.category == category)
            return q.order_by(Nominee.name).all()

        nominees = retry_db_operation(query, on_retry=db.session.rollback)
        return jsonify({"success": True, "nominees": [nominee_payload(n, settings) for n in nominees]})

    @app.get("/api/nominees/<int:nominee_id>")
    def get_nominee(nominee_id):
        nominee = db.session.get(Nominee, nominee_id)
        if not nominee:
            raise NotFoundError("Nominee not found")
        settings = vote_service.get_voting_settings()
        return jsonify({"success": True, "nominee": nominee_payload(nominee, settings)})

    @app.get("/api/events")
    def list_events():
        identity = current_identity()
        q = Event.query
        if request.args.get('featured', '').lower() in ('1', 'true'):
            q = q.filter(Event.is_featured.is_(True))
        if request.args.get('upcoming', '').lower() in ('1', 'true'):
            q = q.filter(Event.date >= utcnow())
        events = q.order_by(Event.date).all()
        user_id = identity.user_id if identity else None
        return jsonify({"success": True, "events": [registrations.describe_event(e, user_id) for e in events]})

    @app.get("/api/events/<int:event_id>")
    def get_event(event_id):
        event = db.session.get(Event, event_id)
        if not event:
            raise NotFoundError("Event not found")
        identity = current_identity()
        return jsonify({
            "success": True,
            "event": registrations.describe_event(event, identity.user_id if identity else None)
        })

    @app.get("/api/academy/genres")
    def list_genres():
        counts = dict(
            db.session.query(AcademyMember.genre_id, func.count(AcademyMember.id))
            .filter(AcademyMember.is_active.is_(True))
            .group_by(AcademyMember.genre_id).all()
        )
        genres = ArtisticGenre.query.order_by(ArtisticGenre.name).all()
        return jsonify({
            "success": True,
            "genres": [dict(g.to_dict(), members_count=counts.get(g.id, 0)) for g in genres]
        })

    @app.get("/api/academy/genres/<slug>")
    def get_genre(slug):
        genre = ArtisticGenre.query.filter_by(slug=slug).first()
        if not genre:
            raise NotFoundError("Genre not found")
        members = genre.members.filter(AcademyMember.is_active.is_(True)).order_by(AcademyMember.name).all()
        return jsonify({
            "success": True,
            "genre": genre.to_dict(),
            "members": [m.to_dict() for m in members]
        })

    @app.get("/api/academy/members/<int:member_id>")
    def get_member(member_id):
        member = db.session.get(AcademyMember, member_id)
        if not member or not member.is_active:
            raise NotFoundError("Academy member not found")
        data = member.to_dict()
        data['genre'] = member.genre.to_dict() if member.genre else None
        return jsonify({"success": True, "member": data})

    @app.get("/api/content/<section>")
    def get_content(section):
        cache = current_app.extensions['content_cache']
        document = cache.get(section)
        return jsonify({
            "success": True,
            "section": section,
            "content": document,
            "generation": cache.generation(section)
        })

    @app.get("/api/voting/status")
    def voting_status():
        settings = vote_service.get_voting_settings()
        try:
            vote_service.check_voting_open(settings, utcnow())
            is_open, message = True, "Voting is open"
        except VotingClosedError as e:
            is_open, message = False, e.message
        return jsonify({
            "success": True,
            "voting_open": is_open,
            "message": message,
            "show_results": settings.get('show_results', True),
            "max_votes_per_user": settings.get('max_votes_per_user'),
            "max_votes_per_category": settings.get('max_votes_per_category'),
            "voting_start_date": settings.get('voting_start_date'),
            "voting_end_date": settings.get('voting_end_date'),
            "unvote_window_minutes": int(vote_service.VOTE_WINDOW.total_seconds() // 60)
        })

    # Authentication

    @app.post("/api/auth/signup")
    def signup():
        data = get_json()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        errors = {}
        if not email or '@' not in email:
            errors['email'] = "A valid email is required"
        if len(password) < 6:
            errors['password'] = "Password must be at least 6 characters"
        if errors:
            raise ValidationError("Please fill all required fields", fields=errors)

        user = get_auth_client().sign_up(email, password)
        ensure_profile(user.id, user.email)
        logger.info(f"✅ User signed up: {user.id}")
        return jsonify({
            "success": True,
            "message": "Account created. Check your email to confirm it.",
            "user": {"id": user.id, "email": user.email}
        }), 201

    @app.post("/api/auth/login")
    def login():
        data = get_json()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        if not email or not password:
            raise ValidationError("Email and password are required")

        auth_session = get_auth_client().sign_in(email, password)
        ensure_profile(auth_session.user_id, auth_session.email)

        session.clear()
        session['user_id'] = auth_session.user_id
        session['email'] = auth_session.email
        session['access_token'] = auth_session.access_token
        session.permanent = True
        g.pop('identity', None)

        role = get_role(auth_session.user_id)
        logger.info(f"✅ User logged in: {auth_session.user_id} (role: {role})")
        return jsonify({
            "success": True,
            "message": "Logged in successfully",
            "user": {"id": auth_session.user_id, "email": auth_session.email, "role": role},
            "access_token": auth_session.access_token
        })

    @app.post("/api/auth/logout")
    def logout():
        token = session.get('access_token')
        client = current_app.extensions.get('auth_client')
        if token and client is not None:
            client.sign_out(token)
        session.clear()
        g.pop('identity', None)
        response = jsonify({"success": True, "message": "Logged out successfully"})
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
        return response

    @app.get("/api/auth/session")
    def auth_session_status():
        identity = current_identity()
        if identity is None:
            return jsonify({"logged_in": False})
        return jsonify({
            "logged_in": True,
            "user": {"id": identity.user_id, "email": identity.email, "role": get_role(identity.user_id)}
        })

    # Votes

    @app.post("/api/votes")
    def cast_vote():
        """Cast a vote for a nominee; one vote per user per nominee"""
        identity = require_identity()
        nominee_id = parse_id(get_json().get('nominee_id'), 'nominee_id')

        vote = vote_service.cast_vote(identity.user_id, nominee_id)
        result = {
            "success": True,
            "message": "Vote recorded",
            "vote": vote_service.describe_vote(vote, utcnow())
        }
        result.update(public_votes_count(nominee_id))
        return jsonify(result), 201

    @app.delete("/api/votes/<int:vote_id>")
    def remove_vote(vote_id):
        identity = require_identity()
        nominee_id = vote_service.remove_vote(identity.user_id, vote_id)
        result = {"success": True, "message": "Vote removed", "nominee_id": nominee_id}
        result.update(public_votes_count(nominee_id))
        return jsonify(result)

    @app.get("/api/my-votes")
    def my_votes():
        identity = require_identity()
        return jsonify({"success": True, "votes": vote_service.user_votes(identity.user_id)})

    @app.get("/api/nominees/<int:nominee_id>/vote")
    def nominee_vote_state(nominee_id):
        identity = current_identity()
        vote = vote_service.find_vote(identity.user_id, nominee_id) if identity else None
        return jsonify({"success": True, "vote": vote_service.describe_vote(vote, utcnow())})

    # Event registrations

    @app.post("/api/events/<int:event_id>/registration")
    def register_for_event(event_id):
        identity = require_identity()
        registration = registrations.register(identity.user_id, event_id)
        return jsonify({
            "success": True,
            "message": "Registration confirmed",
            "registration": registration.to_dict()
        }), 201

    @app.delete("/api/events/<int:event_id>/registration")
    def cancel_registration(event_id):
        identity = require_identity()
        registrations.cancel(identity.user_id, event_id)
        return jsonify({"success": True, "message": "Registration cancelled"})

    # Admin

    @app.get("/api/admin/check-admin")
    def check_admin():
        identity = current_identity()
        role = get_role(identity.user_id) if identity else None
        return jsonify({"success": True, "logged_in": identity is not None,
                        "is_admin": role == 'admin', "role": role})

    @app.get("/api/admin/dashboard")
    @admin_required
    def admin_dashboard():
        stats = dashboard.dashboard_stats(app, timeout=app.config["DASHBOARD_QUERY_TIMEOUT"])
        return jsonify({"success": True, "stats": stats})

    @app.get("/api/admin/statistics")
    @admin_required
    def admin_statistics():
        stats = dashboard.statistics(app, timeout=app.config["DASHBOARD_QUERY_TIMEOUT"])
        return jsonify({"success": True, "statistics": stats})

    @app.get("/api/admin/votes")
    @admin_required
    def admin_list_votes():
        try:
            day = parse_day(request.args.get('date'))
            limit = max(1, min(int(request.args.get('limit', 100)), EXPORT_LIMIT))
        except ValueError as e:
            raise ValidationError(str(e))
        rows = query_votes(request.args.get('category'), day, limit=limit)
        result = []
        for vote, nominee in rows:
            data = vote.to_dict()
            data['nominee_name'] = nominee.name
            data['category'] = nominee.category
            result.append(data)
        return jsonify({"success": True, "votes": result, "total": Vote.query.count()})

    @app.delete("/api/admin/votes/<int:vote_id>")
    @admin_required
    def admin_delete_vote(vote_id):
        nominee_id = vote_service.admin_delete_vote(vote_id)
        return jsonify({"success": True, "message": "Vote deleted", "nominee_id": nominee_id})

    @app.get("/api/admin/export-votes")
    @admin_required
    def export_votes():
        category = request.args.get('category')
        try:
            day = parse_day(request.args.get('date'))
        except ValueError as e:
            raise ValidationError(str(e))
        data = build_votes_workbook(category, day)
        logger.info(f"✅ Votes exported (category={category or 'all'}, date={day})")
        return send_file(
            io.BytesIO(data),
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            as_attachment=True,
            download_name=export_filename(category, day)
        )

    @app.get("/api/admin/voting-config")
    @admin_required
    def get_voting_config():
        return jsonify({"success": True, "settings": vote_service.get_voting_settings()})

    @app.put("/api/admin/voting-config")
    @admin_required
    def update_voting_config():
        cleaned = vote_service.clean_voting_settings(request.get_json(silent=True),
                                                  current=vote_service.get_voting_settings())
        settings = vote_service.save_voting_settings(cleaned)
        return jsonify({"success": True, "message": "Voting settings saved", "settings": settings})

    @app.get("/api/admin/users")
    @admin_required
    def admin_list_users():
        counts = dict(db.session.query(Vote.user_id, func.count(Vote.id)).group_by(Vote.user_id).all())
        users = UserProfile.query.order_by(UserProfile.created_at.desc()).all()
        return jsonify({
            "success": True,
            "users": [dict(u.to_dict(), votes_count=counts.get(u.id, 0)) for u in users]
        })

    @app.put("/api/admin/users/<user_id>/role")
    @admin_required
    def admin_set_role(user_id):
        role = get_json().get('role')
        if role not in ROLES:
            raise ValidationError("Invalid role", fields={"role": f"must be one of: {', '.join(ROLES)}"})
        if user_id == current_identity().user_id:
            raise NotAuthorizedError("You cannot change your own role")
        profile = db.session.get(UserProfile, user_id)
        if not profile:
            raise NotFoundError("User not found")
        profile.role = role
        db.session.commit()
        logger.info(f"✅ Role of user {user_id} set to {role}")
        return jsonify({"success": True, "message": "Role updated", "user": profile.to_dict()})

    @app.post("/api/admin/setup-database")
    @admin_required
    def setup_database():
        seed = get_json().get('seed', True) is not False
        report = provision_schema(seed=seed)
        current_app.extensions['content_cache'].invalidate()
        return jsonify({
            "success": report.ok,
            "message": "Database is up to date" if report.ok else "Database setup finished with errors",
            "report": report.to_dict()
        }), 200 if report.ok else 500

    @app.get("/api/admin/schema-status")
    @admin_required
    def admin_schema_status():
        return jsonify({"success": True, "status": schema_status()})

    @app.post("/api/admin/recount-votes")
    @admin_required
    def recount_votes():
        corrected = vote_service.recount_votes()
        return jsonify({"success": True, "message": f"Corrected {corrected} nominee(s)", "corrected": corrected})

    @app.post("/api/admin/content-cache/invalidate")
    @admin_required
    def invalidate_content_cache():
        section = get_json().get('section') or None
        current_app.extensions['content_cache'].invalidate(section)
        return jsonify({"success": True, "message": f"Invalidated {section or 'all sections'}"})

    # Generic back-office CRUD

    @app.get("/api/admin/<entity>")
    @admin_required
    def admin_list_entities(entity):
        form = get_form(entity)
        return jsonify({"success": True, "items": [obj.to_dict() for obj in form.list()]})

    @app.get("/api/admin/<entity>/schema")
    @admin_required
    def admin_entity_schema(entity):
        return jsonify({"success": True, "schema": get_form(entity).schema()})

    @app.get("/api/admin/<entity>/<int:entity_id>")
    @admin_required
    def admin_get_entity(entity, entity_id):
        return jsonify({"success": True, "item": get_form(entity).get(entity_id).to_dict()})

    @app.post("/api/admin/<entity>")
    @admin_required
    def admin_create_entity(entity):
        obj = get_form(entity).create(request.get_json(silent=True))
        return jsonify({"success": True, "message": "Created", "item": obj.to_dict()}), 201

    @app.put("/api/admin/<entity>/<int:entity_id>")
    @admin_required
    def admin_update_entity(entity, entity_id):
        obj = get_form(entity).update(entity_id, request.get_json(silent=True))
        return jsonify({"success": True, "message": "Updated", "item": obj.to_dict()})

    @app.delete("/api/admin/<entity>/<int:entity_id>")
    @admin_required
    def admin_delete_entity(entity, entity_id):
        snapshot = get_form(entity).delete(entity_id)
        return jsonify({"success": True, "message": "Deleted", "item": snapshot})

    return app


if __name__ == "__main__":
    app = create_app()
    # Use PORT from environment or default to 5000
    port = int(os.environ.get("PORT", 5000))
    app.run(debug=True, host='0.0.0.0', port=port)

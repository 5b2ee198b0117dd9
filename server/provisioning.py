"""
Schema provisioning and repair.

provision_schema() is the single idempotent routine that brings a database up
to the models: missing tables are created, missing columns added, the
votes_count triggers installed, row-level security declared (PostgreSQL only)
and default rows seeded. Each step is fenced so one failure is reported
without stopping the rest. ensure_schema() is the lighter subset run at
application startup.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import inspect, text

from content_cache import DEFAULT_CONTENT
from models import Config, Content, db
from votes import DEFAULT_VOTING_SETTINGS, VOTING_SETTINGS_KEY

logger = logging.getLogger(__name__)

PUBLIC_TABLES = ('categories', 'nominees', 'events', 'artistic_genres', 'academy_members', 'content', 'config')

SQLITE_COUNTER_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS votes_count_after_insert AFTER INSERT ON votes
    BEGIN
        UPDATE nominees SET votes_count = votes_count + 1 WHERE id = NEW.nominee_id;
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS votes_count_after_delete AFTER DELETE ON votes
    BEGIN
        UPDATE nominees SET votes_count = votes_count - 1 WHERE id = OLD.nominee_id;
    END
    """,
]

POSTGRES_COUNTER_TRIGGERS = [
    """
    CREATE OR REPLACE FUNCTION public.sync_votes_count() RETURNS trigger
    LANGUAGE plpgsql SECURITY DEFINER AS $$
    BEGIN
        IF TG_OP = 'INSERT' THEN
            UPDATE public.nominees SET votes_count = votes_count + 1 WHERE id = NEW.nominee_id;
            RETURN NEW;
        ELSIF TG_OP = 'DELETE' THEN
            UPDATE public.nominees SET votes_count = votes_count - 1 WHERE id = OLD.nominee_id;
            RETURN OLD;
        END IF;
        RETURN NULL;
    END;
    $$
    """,
    "DROP TRIGGER IF EXISTS votes_count_after_insert ON public.votes",
    """
    CREATE TRIGGER votes_count_after_insert AFTER INSERT ON public.votes
    FOR EACH ROW EXECUTE FUNCTION public.sync_votes_count()
    """,
    "DROP TRIGGER IF EXISTS votes_count_after_delete ON public.votes",
    """
    CREATE TRIGGER votes_count_after_delete AFTER DELETE ON public.votes
    FOR EACH ROW EXECUTE FUNCTION public.sync_votes_count()
    """,
]

COUNTER_TRIGGER_NAMES = ('votes_count_after_insert', 'votes_count_after_delete')


def _policy(table: str, name: str, clause: str) -> List[str]:
    return [
        f'DROP POLICY IF EXISTS "{name}" ON public.{table}',
        f'CREATE POLICY "{name}" ON public.{table} {clause}',
    ]


def row_level_security_statements() -> List[str]:
    """RLS for clients that talk to the hosted database directly"""
    statements = [
        """
        CREATE OR REPLACE FUNCTION public.is_admin() RETURNS boolean
        LANGUAGE sql STABLE SECURITY DEFINER AS $$
            SELECT EXISTS (
                SELECT 1 FROM public.user_profiles
                WHERE id = auth.uid()::text AND role = 'admin'
            )
        $$
        """,
    ]
    for table in PUBLIC_TABLES:
        statements.append(f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY")
        statements += _policy(table, f"{table}_public_read", "FOR SELECT USING (true)")
        statements += _policy(table, f"{table}_admin_write",
                              "FOR ALL USING (public.is_admin()) WITH CHECK (public.is_admin())")

    statements.append("ALTER TABLE public.votes ENABLE ROW LEVEL SECURITY")
    statements += _policy('votes', 'votes_read_own',
                          "FOR SELECT USING (user_id = auth.uid()::text OR public.is_admin())")
    statements += _policy('votes', 'votes_insert_own',
                          "FOR INSERT WITH CHECK (user_id = auth.uid()::text)")
    statements += _policy('votes', 'votes_delete_own_within_window',
                          "FOR DELETE USING (user_id = auth.uid()::text "
                          "AND created_at > (now() AT TIME ZONE 'utc') - interval '2 hours')")

    statements.append("ALTER TABLE public.event_registrations ENABLE ROW LEVEL SECURITY")
    statements += _policy('event_registrations', 'event_registrations_own',
                          "FOR ALL USING (user_id = auth.uid()::text OR public.is_admin()) "
                          "WITH CHECK (user_id = auth.uid()::text)")

    statements.append("ALTER TABLE public.user_profiles ENABLE ROW LEVEL SECURITY")
    statements += _policy('user_profiles', 'user_profiles_read_own',
                          "FOR SELECT USING (id = auth.uid()::text OR public.is_admin())")
    statements += _policy('user_profiles', 'user_profiles_admin_update',
                          "FOR UPDATE USING (public.is_admin()) WITH CHECK (public.is_admin())")
    return statements


@dataclass
class ProvisionReport:
    created_tables: List[str] = field(default_factory=list)
    added_columns: Dict[str, List[str]] = field(default_factory=dict)
    triggers_installed: bool = False
    policies_applied: bool = False
    seeded: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            'ok': self.ok,
            'created_tables': self.created_tables,
            'added_columns': self.added_columns,
            'triggers_installed': self.triggers_installed,
            'policies_applied': self.policies_applied,
            'seeded': self.seeded,
            'errors': self.errors,
        }


def _dialect() -> str:
    return db.engine.dialect.name


def missing_tables() -> List[str]:
    existing = set(inspect(db.engine).get_table_names())
    return [name for name in db.metadata.tables if name not in existing]


def missing_columns() -> Dict[str, List[str]]:
    inspector = inspect(db.engine)
    existing_tables = set(inspector.get_table_names())
    missing = {}
    for name, table in db.metadata.tables.items():
        if name not in existing_tables:
            continue
        live = {col['name'] for col in inspector.get_columns(name)}
        absent = [col.name for col in table.columns if col.name not in live]
        if absent:
            missing[name] = absent
    return missing


def counter_triggers_present() -> bool:
    dialect = _dialect()
    if dialect == 'sqlite':
        sql = "SELECT name FROM sqlite_master WHERE type = 'trigger'"
    elif dialect == 'postgresql':
        sql = "SELECT tgname FROM pg_trigger WHERE NOT tgisinternal"
    else:
        return False
    names = {row[0] for row in db.session.execute(text(sql))}
    return all(name in names for name in COUNTER_TRIGGER_NAMES)


def schema_status() -> dict:
    """Report drift between the models and the live database without changing anything"""
    tables = missing_tables()
    columns = missing_columns()
    triggers = counter_triggers_present() if 'votes' not in tables else False
    return {
        'dialect': _dialect(),
        'missing_tables': tables,
        'missing_columns': columns,
        'counter_triggers': triggers,
        'healthy': not tables and not columns and triggers,
    }


def _run_step(report: ProvisionReport, label: str, step) -> bool:
    try:
        step()
        return True
    except Exception as e:
        db.session.rollback()
        logger.error(f"❌ Provisioning step '{label}' failed: {e}", exc_info=True)
        report.errors.append(f"{label}: {e}")
        return False


def _create_tables(report: ProvisionReport) -> None:
    absent = missing_tables()
    if absent:
        db.create_all()
        report.created_tables.extend(absent)
        logger.info(f"✅ Created tables: {', '.join(absent)}")


def _add_columns(report: ProvisionReport) -> None:
    dialect = db.engine.dialect
    quote = dialect.identifier_preparer.quote
    for table_name, columns in missing_columns().items():
        table = db.metadata.tables[table_name]
        for column_name in columns:
            column = table.columns[column_name]
            ddl = f"ALTER TABLE {quote(table_name)} ADD COLUMN {quote(column_name)} " \
                  f"{column.type.compile(dialect=dialect)}"
            if column.server_default is not None:
                ddl += f" DEFAULT {column.server_default.arg}"
            db.session.execute(text(ddl))
            report.added_columns.setdefault(table_name, []).append(column_name)
            logger.info(f"✅ Added column {table_name}.{column_name}")
    db.session.commit()


def _install_triggers(report: ProvisionReport) -> None:
    dialect = _dialect()
    if dialect == 'sqlite':
        statements = SQLITE_COUNTER_TRIGGERS
    elif dialect == 'postgresql':
        statements = POSTGRES_COUNTER_TRIGGERS
    else:
        raise RuntimeError(f"votes_count triggers are not available for {dialect}")
    for statement in statements:
        db.session.execute(text(statement))
    db.session.commit()
    report.triggers_installed = True


def _apply_policies(report: ProvisionReport) -> None:
    for statement in row_level_security_statements():
        db.session.execute(text(statement))
    db.session.commit()
    report.policies_applied = True
    logger.info("✅ Row level security policies applied")


def _seed_defaults(report: ProvisionReport) -> None:
    for section, document in DEFAULT_CONTENT.items():
        if not Content.query.filter_by(section=section).first():
            db.session.add(Content(section=section, title=section.capitalize(), content=dict(document)))
            report.seeded.append(f"content:{section}")
    if not Config.query.filter_by(key=VOTING_SETTINGS_KEY).first():
        db.session.add(Config(key=VOTING_SETTINGS_KEY, value=dict(DEFAULT_VOTING_SETTINGS)))
        report.seeded.append(f"config:{VOTING_SETTINGS_KEY}")
    db.session.commit()


def ensure_schema() -> ProvisionReport:
    """Tables and the votes_count triggers; safe to run on every startup"""
    report = ProvisionReport()
    if _run_step(report, 'create tables', lambda: _create_tables(report)):
        _run_step(report, 'install votes_count triggers', lambda: _install_triggers(report))
    return report


def provision_schema(seed: bool = True) -> ProvisionReport:
    report = ProvisionReport()
    tables_ok = _run_step(report, 'create tables', lambda: _create_tables(report))
    _run_step(report, 'add missing columns', lambda: _add_columns(report))
    if tables_ok:
        _run_step(report, 'install votes_count triggers', lambda: _install_triggers(report))
    if _dialect() == 'postgresql':
        _run_step(report, 'row level security', lambda: _apply_policies(report))
    if seed and tables_ok:
        _run_step(report, 'seed defaults', lambda: _seed_defaults(report))

    if report.ok:
        logger.info(f"✅ Schema provisioned: {report.to_dict()}")
    else:
        logger.warning(f"⚠ Schema provisioned with errors: {report.errors}")
    return report

import os
from typing import Optional, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from flask import Flask, jsonify
from sqlalchemy import create_engine, func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from config import Config, current_database_url
from extensions import db, migrate, jwt
from finance import seed_expense_categories
from models import (
    Client,
    Expense,
    ExpenseCategory,
    JobCard,
    Product,
    RoleEnum,
    Sale,
    User,
)
from routes import (
    auth,
    expenses,
    job_cards,
    sales,
)


if os.name != "nt":  # pragma: no cover - platform dependent import
    import fcntl  # type: ignore[import-not-found]
else:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore[assignment]


def _ensure_database_exists(database_url: str | None) -> None:
    if not database_url:
        return

    url = make_url(database_url)
    backend = (url.get_backend_name() or "").lower()

    if backend.startswith("sqlite"):
        database_path = url.database
        if database_path and database_path not in {":memory:", ""}:
            directory = os.path.dirname(os.path.abspath(database_path))
            if directory:
                os.makedirs(directory, exist_ok=True)
        return

    database_name = url.database
    if not database_name:
        return

    engine = create_engine(url)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return
    except OperationalError:
        pass
    finally:
        engine.dispose()

    if not backend.startswith("postgresql"):
        return

    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as connection:
            exists = connection.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            ).scalar()
            if not exists:
                connection.execute(text(f'CREATE DATABASE "{database_name}"'))
    finally:
        admin_engine.dispose()


def _run_database_migrations(app: Flask) -> None:
    """Apply Alembic migrations if the schema is not up-to-date."""

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        return

    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        return

    migrations_dir = os.path.join(app.root_path, "migrations")
    alembic_ini = os.path.join(migrations_dir, "alembic.ini")
    if not os.path.exists(alembic_ini):
        return

    config = AlembicConfig(alembic_ini)
    config.set_main_option("script_location", migrations_dir)
    config.set_main_option("sqlalchemy.url", database_uri.replace("%", "%%"))

    script = ScriptDirectory.from_config(config)
    head_revision = script.get_current_head()
    if not head_revision:
        return

    def _current_revision() -> str | None:
        try:
            with db.engine.connect() as connection:
                return connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        except (OperationalError, ProgrammingError):
            return None

    with app.app_context():
        if _current_revision() == head_revision:
            return

        lock_path = os.path.join(app.instance_path, "alembic.lock")
        os.makedirs(app.instance_path, exist_ok=True)
        lock_file = open(lock_path, "w")
        try:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_EX)

            if _current_revision() == head_revision:
                return

            app.logger.info("Applying database migrations…")
            try:
                command.upgrade(config, "head")
            except Exception:
                if _current_revision() != head_revision:
                    raise
        finally:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)
    database_url = current_database_url()
    _ensure_database_exists(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    db.init_app(app)
    migrate.init_app(app, db)
    _run_database_migrations(app)
    jwt.init_app(app)

    @jwt.additional_claims_loader
    def add_claims(identity):
        try:
            u = db.session.get(User, int(identity))
        except (TypeError, ValueError):
            u = None
        return {"role": u.role.value if u else None}

    app.register_blueprint(auth.bp)
    app.register_blueprint(expenses.bp)
    app.register_blueprint(sales.bp)
    app.register_blueprint(job_cards.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True, "currency": app.config["CURRENCY_CODE"]})

    @app.shell_context_processor
    def shell_context():
        return {
            "db": db,
            "User": User,
            "Client": Client,
            "Product": Product,
            "ExpenseCategory": ExpenseCategory,
            "Expense": Expense,
            "Sale": Sale,
            "JobCard": JobCard,
        }

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_director_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    ensure_if_missing: bool = True,
    force_reset: bool = False,
) -> Tuple[str, str]:
    """Ensure a director account exists and optionally reset its password.

    Returns a tuple of (status, normalized_email) where status is one of
    ``{"created", "reset", "updated", "skipped"}``.
    """

    target_app = flask_app or globals().get("app")
    if target_app is None:
        return "skipped", _normalize_email(email)

    normalized_email = _normalize_email(email or os.getenv("DIRECTOR_EMAIL", "director@example.com"))
    password = password or os.getenv("DIRECTOR_PASSWORD", "Director@123")
    provided_name = name if name is not None else os.getenv("DIRECTOR_NAME")
    target_name = (provided_name or "").strip() or None

    with target_app.app_context():
        try:
            director = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables might not be ready yet (e.g. before migrations run)
            return "skipped", normalized_email

        if director:
            status = "skipped"
            if director.role != RoleEnum.DIRECTOR:
                director.role = RoleEnum.DIRECTOR
                status = "updated"
            if not director.active:
                director.active = True
                status = "updated"
            if target_name and director.name != target_name:
                director.name = target_name
                status = "updated"
            if force_reset:
                director.set_password(password)
                status = "reset"

            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not ensure_if_missing:
            return "skipped", normalized_email

        if not force_reset:
            # Avoid creating a second director when one already exists
            existing = User.query.filter_by(role=RoleEnum.DIRECTOR).first()
            if existing:
                return "skipped", normalized_email

        director = User(
            name=target_name or "Director",
            email=normalized_email,
            role=RoleEnum.DIRECTOR,
            active=True,
        )
        director.set_password(password)
        db.session.add(director)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_director_user(flask_app=None):
    # Without DIRECTOR_PASSWORD only an existing director is touched; use `flask seed-director`.
    password_configured = bool((os.getenv("DIRECTOR_PASSWORD") or "").strip())
    status, normalized_email = _ensure_director_user(
        flask_app=flask_app,
        ensure_if_missing=password_configured,
        force_reset=password_configured and os.getenv("RUN_SEED_DIRECTOR") == "1",
    )
    if status == "created":
        print(f"✅ Director created: {normalized_email}")
    elif status == "reset":
        print(f"✅ Director password reset: {normalized_email}")
    elif status == "updated":
        print(f"✅ Director account updated: {normalized_email}")
    return status, normalized_email


# Call the hook at startup (idempotent)
_bootstrap_director_user(flask_app=app)


# ---- CLI: seed or reset director ----
@app.cli.command("seed-director")
@click.option("--email", default="director@example.com", help="Director email")
@click.option("--password", default="Director@123", help="Director password")
@click.option("--name", default="Director", help="Director display name")
def seed_director(email, password, name):
    """Create or reset the director account."""
    with app.app_context():
        status, normalized_email = _ensure_director_user(
            flask_app=app,
            email=email,
            password=password,
            name=name,
            ensure_if_missing=True,
            force_reset=True,
        )

        if status == "created":
            click.echo(f"✅ Director created: {normalized_email}")
        elif status == "reset":
            click.echo(f"✅ Director password reset: {normalized_email}")
        elif status == "updated":
            click.echo(f"✅ Director account updated: {normalized_email}")
        else:
            click.echo(f"ℹ️ Director already up-to-date: {normalized_email}")


@app.cli.command("seed-expense-categories")
def seed_expense_categories_command() -> None:
    """Seed the default expense categories."""

    with app.app_context():
        added = seed_expense_categories()
        click.echo(f"✅ Expense categories seeded ({added} added).")


if __name__ == "__main__":
    app.run(debug=True, port=int(os.getenv("PORT", 5000)))

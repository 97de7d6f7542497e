import socket
from contextlib import closing

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

from intake.core.config import settings

_engine = None


def _report_connection_failure(exc: Exception) -> None:
    """Print high-signal diagnostics when the engine cannot reach the store."""
    print(f"Warning: Could not connect to database: {exc}")
    print("Imports will fail until the connection succeeds.")

    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        print(f"  Unable to parse INTAKE_DATABASE_URL ({parse_error}); skipping detailed diagnostics.")
        return

    masked_url = url._replace(password="***" if url.password else None)
    print("  Database connection settings:")
    print(f"    Dialect: {masked_url.get_backend_name()} (driver: {masked_url.get_driver_name() or 'default'})")
    print(f"    Host: {masked_url.host or 'localhost'}")
    print(f"    Port: {masked_url.port or '(default)'}")
    print(f"    Database: {masked_url.database}")

    if masked_url.get_backend_name() == "sqlite":
        return

    host = masked_url.host or "localhost"
    port = masked_url.port or 5432

    try:
        with closing(socket.create_connection((host, port), timeout=2)):
            print(f"    Socket check: able to reach {host}:{port}")
    except OSError as socket_err:
        print(f"    Socket check: unable to reach {host}:{port} ({socket_err})")


def get_engine():
    global _engine
    if _engine is None:
        try:
            _engine = create_engine(settings.database_url)
            # Test connection eagerly so failures surface immediately.
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(e)
            # Keep the engine so callers can proceed (may still fail later).
            _engine = create_engine(settings.database_url)
    return _engine


def set_engine(engine) -> None:
    """Swap the process-wide engine (used by the console and tests)."""
    global _engine
    _engine = engine


Base = declarative_base()

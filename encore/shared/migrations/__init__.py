"""SQL schema migrations for the PostgreSQL store."""

from .runner import VERSIONS_DIR, MigrationRunner

__all__ = ["VERSIONS_DIR", "MigrationRunner"]

"""Compiler and database configuration resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from scopeforge.core.naming import is_sql_identifier


@dataclass
class CompilerConfig:
    """Where models are read from, where artifacts go, and how to compile."""

    metadata_path: Path
    output_path: Path
    auth_schema: str = "public"
    workers: int = 1

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> CompilerConfig:
        """Create config from environment variables.

        Resolution order for each setting:
        1. SCOPEFORGE_* env var
        2. Default relative to base_path (or the current directory)
        """
        base = base_path or Path.cwd()
        metadata = os.environ.get("SCOPEFORGE_METADATA_PATH")
        output = os.environ.get("SCOPEFORGE_OUTPUT_PATH")
        workers = os.environ.get("SCOPEFORGE_WORKERS", "1")

        try:
            worker_count = int(workers)
        except ValueError:
            raise ValueError(f"SCOPEFORGE_WORKERS must be an integer, got '{workers}'") from None

        config = cls(
            metadata_path=Path(metadata) if metadata else base / "metadata",
            output_path=Path(output) if output else base / "generated",
            auth_schema=os.environ.get("SCOPEFORGE_AUTH_SCHEMA", "public"),
            workers=worker_count,
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not is_sql_identifier(self.auth_schema):
            raise ValueError(f"'{self.auth_schema}' is not a valid schema name")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")


@dataclass
class DatabaseConfig:
    """Database connection configuration for the runtime repository.

    Only postgresql:// URLs are supported.
    """

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig | None:
        """Read DATABASE_URL; None when it is unset."""
        url = os.environ.get("DATABASE_URL")
        if not url:
            return None
        return cls(url=url)

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith(("postgresql", "postgres://"))

    @property
    def psycopg_url(self) -> str:
        """URL accepted by psycopg.connect(); strips a +psycopg driver suffix."""
        return self.url.replace("postgresql+psycopg://", "postgresql://")

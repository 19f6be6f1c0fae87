"""Error types and helpers for the analysis pipeline."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from .orchestrate import PipelineState


class GraveyardError(Exception):
    """Base class for errors raised by the graveyard package."""


class CompletionServiceError(GraveyardError):
    """The completion service was unreachable, refused the call, or timed out."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class MalformedResponseError(CompletionServiceError):
    """Completion text did not decode to the expected JSON structure."""

    def __init__(self, message: str, *, raw_output: str = "") -> None:
        super().__init__(message)
        self.raw_output = raw_output


class PersistenceError(GraveyardError):
    """A write to the project history store failed."""


class NotFoundError(GraveyardError):
    """A requested record does not exist or is not owned by the caller."""


class AnalysisInProgressError(GraveyardError):
    """Another analysis run for the same user currently holds the lock."""

    def __init__(self, owner_id: str) -> None:
        super().__init__(f"An analysis for user {owner_id} is already running")
        self.owner_id = owner_id


class AnalysisError(GraveyardError):
    """A pipeline run failed; no writes from the failing phase were committed."""

    def __init__(self, message: str, *, failed_state: PipelineState) -> None:
        super().__init__(message)
        self.failed_state = failed_state


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"Database schema is not initialized{table_hint}.",
        "Run: `alembic upgrade head`",
        "Or for a scratch database: `graveyard init-db`",
    ]
    return "\n".join(lines)

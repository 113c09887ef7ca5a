"""
Shared plumbing for the command line: context object, parameter types and
output helpers.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

import click
from sqlalchemy.exc import SQLAlchemyError

from caracol.core.config import normalize_database_url, settings
from caracol.core.database import Database
from caracol.core.exceptions import CaracolError
from caracol.services.collection_store import CollectionStore

T = TypeVar("T")


class AppContext:
    """Per invocation state shared by all commands."""

    def __init__(self, dburl: Optional[str] = None, db_trace: bool = False):
        self.dburl = normalize_database_url(dburl) if dburl else settings.database_url
        self.db_trace = db_trace
        self._db: Optional[Database] = None

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database(self.dburl, echo=self.db_trace)
        return self._db

    def run(self, fn: Callable[[CollectionStore], Awaitable[T]]) -> T:
        """
        Run an async command body against the store.

        Application and database errors are reported as click errors so the
        process exits non-zero with the message on stderr.
        """

        async def main():
            try:
                return await fn(CollectionStore(self.db))
            finally:
                await self.db.dispose()

        try:
            return asyncio.run(main())
        except (CaracolError, SQLAlchemyError) as e:
            raise click.ClickException(str(e)) from e


pass_app = click.make_pass_decorator(AppContext)


class TimeParam(click.ParamType):
    """RFC3339 UTC time (``2024-01-01T00:00:00Z``), unix seconds or ``now``."""

    name = "time"

    def convert(self, value, param, ctx):
        if isinstance(value, datetime):
            return value
        text = str(value).strip()
        if text == "now":
            return datetime.now(timezone.utc)
        if text.isdigit():
            return datetime.fromtimestamp(int(text), timezone.utc)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            self.fail(f"{value!r} is neither YYYY-MM-DDTHH:MM:SSZ nor unix seconds", param, ctx)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


TIME = TimeParam()


def enum_choice(enum_cls) -> click.Choice:
    return click.Choice([member.value for member in enum_cls])


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if hasattr(value, "value") and not isinstance(value, (int, float)):
        return str(value.value)
    if isinstance(value, float):
        return repr(value)
    return str(value)


def echo_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    """Print rows as aligned columns."""
    cells = [[format_value(v) for v in row] for row in rows]
    widths = [len(h) for h in headers]
    for row in cells:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    click.echo("  ".join(h.upper().ljust(w) for h, w in zip(headers, widths)).rstrip())
    for row in cells:
        click.echo("  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip())

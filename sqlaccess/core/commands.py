"""
Command construction: validate SQL, copy parameters, render driver-ready text + bind args.
Named markers (@name) are rewritten to the driver's placeholder; values always go as bind args.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlaccess.core.parameters import SqlParameter, SqlParameters
from sqlaccess.utils.errors import InvalidArgumentError


class CommandType(Enum):
    TEXT = "text"
    STORED_PROCEDURE = "stored_procedure"


@dataclass
class Command:
    text: str
    command_type: CommandType
    parameters: list[SqlParameter] = field(default_factory=list)
    timeout: int | None = None


@dataclass
class RenderedCommand:
    """SQL in the driver's placeholder style plus the matching bind args."""
    sql: str
    args: list | dict | None
    parameters: list[SqlParameter]


# Literals and comments are matched first so markers inside them are left alone.
_LITERALS = r"""
    (?P<squote>'(?:[^']|'')*') |
    (?P<dquote>"[^"]*") |
"""
_MARKERS = r"""
    (?P<line_comment>--[^\r\n]*) |
    (?P<block_comment>/\*[\s\S]*?\*/) |
    (?P<sysvar>@@\w+) |
    (?P<param>@(?P<name>[A-Za-z_]\w*)) |
    (?P<percent>%)
"""
_TOKEN_RE = re.compile(_LITERALS + _MARKERS, re.VERBOSE)
# T-SQL quotes identifiers with [...]; elsewhere brackets are list literals and subscripts
_BRACKET_TOKEN_RE = re.compile(_LITERALS + r"(?P<bracket>\[[^\]]*\]) |" + _MARKERS, re.VERBOSE)


def build_command(
    sql: str,
    command_type: CommandType = CommandType.TEXT,
    parameters: SqlParameters | None = None,
    timeout: int | None = None,
) -> Command:
    """Validate SQL and copy every parameter into an independent command parameter."""
    if sql is None or not str(sql).strip():
        raise InvalidArgumentError("SQL command text must not be empty.")
    if not isinstance(command_type, CommandType):
        raise InvalidArgumentError(f"command_type must be a CommandType, got {command_type!r}")
    copied = []
    if parameters is not None:
        for p in parameters.list():
            copied.append(SqlParameter(name=p.name, value=p.value, sql_type=p.sql_type, size=p.size))
    return Command(text=sql, command_type=command_type, parameters=copied, timeout=timeout)


def render(command: Command, dialect) -> RenderedCommand:
    """Render a command for the dialect's paramstyle ('qmark' or 'pyformat')."""
    if command.command_type is CommandType.STORED_PROCEDURE:
        sql, args = dialect.procedure_sql(command.text.strip(), command.parameters)
        return RenderedCommand(sql=sql, args=args, parameters=list(command.parameters))
    token_re = _BRACKET_TOKEN_RE if getattr(dialect, "bracket_identifiers", False) else _TOKEN_RE
    return _render_text(command.text, command.parameters, dialect.paramstyle, token_re)


def _render_text(
    sql: str, parameters: list[SqlParameter], paramstyle: str, token_re: re.Pattern = _TOKEN_RE
) -> RenderedCommand:
    lookup: dict[str, SqlParameter] = {}
    for p in parameters:
        lookup.setdefault(p.key, p)

    has_markers = any(
        m.group("param") and m.group("name") in lookup for m in token_re.finditer(sql)
    )
    if not has_markers:
        return RenderedCommand(sql=sql, args=None, parameters=[])

    pyformat = paramstyle == "pyformat"
    ordered: list[SqlParameter] = []

    def _sub(m: re.Match) -> str:
        text = m.group(0)
        if m.group("param"):
            p = lookup.get(m.group("name"))
            if p is None:
                return text.replace("%", "%%") if pyformat else text
            ordered.append(p)
            return f"%({p.key})s" if pyformat else "?"
        # psycopg2 interpolates the whole string once args are bound
        return text.replace("%", "%%") if pyformat else text

    rendered = token_re.sub(_sub, sql)
    if pyformat:
        args: Any = {p.key: p.driver_value() for p in ordered}
    else:
        args = [p.driver_value() for p in ordered]
    return RenderedCommand(sql=rendered, args=args, parameters=ordered)

"""
Rule-driven validation of raw form input.

Rules are `|`-separated strings per field, e.g.::

    Validator(data, {"email": "required|email|unique:users,email"}, session)

Supported rules: required, nullable, string, integer, email, max:N,
unique:table,column[,except_id], exists:table,column.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from sqlalchemy import Table, func, select
from sqlalchemy.orm import Session

from app.portal.models import Base

_INT_RE = re.compile(r"^[+-]?\d+$")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def parse_int(raw: Any) -> int | None:
    """Parse an integer from form input; None when it is not a whole number."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return None
    raw = raw.strip()
    if not _INT_RE.match(raw):
        return None
    return int(raw)


def parse_positive_id(raw: Any) -> int | None:
    value = parse_int(raw)
    if value is None or value <= 0:
        return None
    return value


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def _label(field: str) -> str:
    name = field[:-3] if field.endswith("_id") else field
    return name.replace("_", " ").capitalize()


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


class Validator:
    def __init__(self, data: Mapping[str, Any], rules: Mapping[str, str], session: Session | None = None):
        self.data = data
        self.rules = {field: [r for r in spec.split("|") if r] for field, spec in rules.items()}
        self.session = session
        self._errors: list[str] | None = None

    def fails(self) -> bool:
        return bool(self.errors())

    def passes(self) -> bool:
        return not self.fails()

    def errors(self) -> list[str]:
        if self._errors is None:
            self._errors = []
            for field, rules in self.rules.items():
                message = self._check_field(field, rules)
                if message:
                    self._errors.append(message)
        return list(self._errors)

    def _check_field(self, field: str, rules: list[str]) -> str | None:
        """Return the first failing rule's message for `field` (one message per field)."""
        value = self.data.get(field)
        label = _label(field)

        if _is_empty(value):
            if "required" in rules:
                return f"{label} is required."
            return None

        as_int = "integer" in rules
        for rule in rules:
            name, _, arg = rule.partition(":")
            if name in ("required", "nullable"):
                continue
            if name == "string":
                if not isinstance(value, str):
                    return f"{label} must be text."
            elif name == "integer":
                if parse_int(value) is None:
                    return f"{label} must be a whole number."
            elif name == "email":
                if not isinstance(value, str) or not is_valid_email(value.strip()):
                    return f"{label} must be a valid email address."
            elif name == "max":
                limit = int(arg)
                if as_int:
                    if parse_int(value) is not None and parse_int(value) > limit:
                        return f"{label} may not be greater than {limit}."
                elif len(str(value).strip()) > limit:
                    return f"{label} may not be longer than {limit} characters."
            elif name == "unique":
                if not self._unique(arg, value):
                    return f"{label} is already in use."
            elif name == "exists":
                lookup = parse_int(value) if as_int else value
                if not self._exists(arg, lookup):
                    return f"Selected {label.lower()} does not exist."
            else:
                raise ValueError(f"Unknown validation rule: {rule}")
        return None

    def _table(self, name: str) -> Table:
        if self.session is None:
            raise RuntimeError("Database rules need a session")
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table in validation rule: {name}") from None

    def _unique(self, arg: str, value: Any) -> bool:
        parts = [p.strip() for p in arg.split(",")]
        table = self._table(parts[0])
        column = table.c[parts[1]]
        except_id = parse_int(parts[2]) if len(parts) > 2 and parts[2] else None

        if isinstance(value, str):
            cond = func.lower(column) == value.strip().lower()
        else:
            cond = column == value
        stmt = select(func.count()).select_from(table).where(cond)
        if except_id is not None:
            stmt = stmt.where(table.c.id != except_id)
        return self.session.execute(stmt).scalar_one() == 0

    def _exists(self, arg: str, value: Any) -> bool:
        table_name, _, column_name = arg.partition(",")
        table = self._table(table_name.strip())
        column = table.c[column_name.strip()]
        stmt = select(func.count()).select_from(table).where(column == value)
        if "is_deleted" in table.c:
            stmt = stmt.where(table.c.is_deleted.is_(False))
        return self.session.execute(stmt).scalar_one() > 0

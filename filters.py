"""
Typed filters for record queries

Conditions are built from `Field` objects and combined with `&` and `|`:

    expr = (Field("store_id") == store_id) & Field("email").like(customer)

An expression compiles to a MongoDB query document (`to_mongo()`) and to the
textual filter syntax of the record API (`str(expr)`). Values are always
escaped, never pasted into the output as-is.
"""
import math
import re
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

_MONGO_OPS = {
    "=": None,
    "!=": "$ne",
    ">": "$gt",
    ">=": "$gte",
    "<": "$lt",
    "<=": "$lte",
}


def quote(value: Any) -> str:
    """Render a literal for the textual filter syntax."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (datetime, date)):
        value = value.isoformat()
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


class Expr:
    def __and__(self, other: "Expr") -> "Expr":
        return And([self, other])

    def __or__(self, other: "Expr") -> "Expr":
        return Or([self, other])

    def to_mongo(self) -> dict:
        raise NotImplementedError


class Condition(Expr):
    def __init__(self, field: str, op: str, value: Any):
        self.field = field
        self.op = op
        self.value = value

    def to_mongo(self) -> dict:
        if self.op == "~":
            return {self.field: {"$regex": re.escape(str(self.value)), "$options": "i"}}
        mongo_op = _MONGO_OPS[self.op]
        if mongo_op is None:
            return {self.field: self.value}
        return {self.field: {mongo_op: self.value}}

    def __str__(self) -> str:
        return f"{self.field} {self.op} {quote(self.value)}"

    def __repr__(self) -> str:
        return f"Condition({self.field!r}, {self.op!r}, {self.value!r})"


class In(Expr):
    def __init__(self, field: str, values: Iterable[Any]):
        self.field = field
        self.values = list(values)

    def to_mongo(self) -> dict:
        return {self.field: {"$in": self.values}}

    def __str__(self) -> str:
        if not self.values:
            # an empty set matches nothing
            return f"{self.field} = null && {self.field} != null"
        return "(" + " || ".join(f"{self.field} = {quote(v)}" for v in self.values) + ")"


class And(Expr):
    def __init__(self, parts: Sequence[Expr]):
        self.parts = []
        for part in parts:
            # keep the tree flat, a && (b && c) -> a && b && c
            if isinstance(part, And):
                self.parts.extend(part.parts)
            else:
                self.parts.append(part)

    def to_mongo(self) -> dict:
        if not self.parts:
            return {}
        if len(self.parts) == 1:
            return self.parts[0].to_mongo()
        return {"$and": [p.to_mongo() for p in self.parts]}

    def __str__(self) -> str:
        return " && ".join(_group(p) for p in self.parts)


class Or(Expr):
    def __init__(self, parts: Sequence[Expr]):
        self.parts = []
        for part in parts:
            if isinstance(part, Or):
                self.parts.extend(part.parts)
            else:
                self.parts.append(part)

    def to_mongo(self) -> dict:
        if not self.parts:
            return {}
        if len(self.parts) == 1:
            return self.parts[0].to_mongo()
        return {"$or": [p.to_mongo() for p in self.parts]}

    def __str__(self) -> str:
        return "(" + " || ".join(str(p) for p in self.parts) + ")"


def _group(expr: Expr) -> str:
    return f"({expr})" if isinstance(expr, And) else str(expr)


class Field:
    """A record attribute used on the left-hand side of a condition."""

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, value):  # type: ignore[override]
        return Condition(self.name, "=", value)

    def __ne__(self, value):  # type: ignore[override]
        return Condition(self.name, "!=", value)

    def __gt__(self, value):
        return Condition(self.name, ">", value)

    def __ge__(self, value):
        return Condition(self.name, ">=", value)

    def __lt__(self, value):
        return Condition(self.name, "<", value)

    def __le__(self, value):
        return Condition(self.name, "<=", value)

    __hash__ = None  # type: ignore[assignment]

    def like(self, text: str) -> Condition:
        return Condition(self.name, "~", text)

    def in_(self, values: Iterable[Any]) -> In:
        return In(self.name, values)


def all_of(*exprs: Optional[Expr]) -> Expr:
    return And([e for e in exprs if e is not None])


def any_of(*exprs: Optional[Expr]) -> Expr:
    return Or([e for e in exprs if e is not None])


def compile_filter(expr: Optional[Expr]) -> dict:
    return expr.to_mongo() if expr is not None else {}


# -----------------------------
# Sorting & paging
# -----------------------------

def parse_sort(sort: Optional[str]) -> List[Tuple[str, int]]:
    """'-created_at,+name' -> [('created_at', -1), ('name', 1)]"""
    spec = []
    for part in (sort or "").split(","):
        part = part.strip()
        if not part:
            continue
        if part[0] == "-":
            spec.append((part[1:], -1))
        elif part[0] == "+":
            spec.append((part[1:], 1))
        else:
            spec.append((part, 1))
    return spec


def sort_param(value: Optional[str], allowed: Iterable[str], default: str = "-created_at", aliases: Optional[dict] = None) -> str:
    """Convert the `field.direction` form used by listing pages to a signed sort.

    A bare field name sorts descending. Fields outside `allowed` fall back to
    `default`. `aliases` maps public names to stored fields (price -> price_cents).
    """
    if not value:
        return default
    if "." in value:
        field, _, direction = value.partition(".")
        sign = "" if direction == "asc" else "-"
    else:
        sign = "" if value.startswith("+") else "-"
        field = value.lstrip("+-")
    if field not in set(allowed):
        return default
    field = (aliases or {}).get(field, field)
    return f"{sign}{field}"


def page_count(total: int, per_page: int) -> int:
    if per_page <= 0:
        return 0
    return math.ceil(total / per_page)

# context.py
from __future__ import annotations

import string
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .errors import UndefinedVariable


class EnvironmentContext(Mapping[str, str]):
    """
    Immutable key/value configuration shared by every stage of a run
    (region, registry, cluster name, image tag, recipients, ...).

    Derive new contexts with `with_override` / `with_overrides`; the original
    is never modified, so concurrent runs can hold their own copy safely.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, object]] = None):
        frozen = {str(k): str(v) for k, v in (values or {}).items()}
        object.__setattr__(self, "_values", MappingProxyType(frozen))

    def __setattr__(self, name, value):
        raise AttributeError("EnvironmentContext is immutable")

    # ---- Mapping protocol ----
    def __getitem__(self, key: str) -> str:
        return self.resolve(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EnvironmentContext({dict(self._values)!r})"

    # ---- Contract ----
    def resolve(self, key: str) -> str:
        try:
            return self._values[key]
        except KeyError:
            raise UndefinedVariable(key) from None

    def with_override(self, key: str, value: object) -> "EnvironmentContext":
        return self.with_overrides({key: value})

    def with_overrides(self, overrides: Optional[Mapping[str, object]]) -> "EnvironmentContext":
        if not overrides:
            return self
        merged: Dict[str, object] = dict(self._values)
        merged.update(overrides)
        return EnvironmentContext(merged)

    def require(self, *keys: str) -> None:
        """Pre-flight check: every key must resolve."""
        for key in keys:
            self.resolve(key)

    def as_env(self) -> Dict[str, str]:
        return dict(self._values)


# ---------------------------------------------------------------------
# Argument tokens (rendered against a context at execution time)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Var:
    """A single context variable used as a whole argument."""
    name: str

    def render(self, ctx: EnvironmentContext) -> str:
        return ctx.resolve(self.name)

    def __str__(self) -> str:
        return "${" + self.name + "}"


@dataclass(frozen=True)
class Fmt:
    """A str.format-style template whose fields are context variables."""
    template: str

    def fields(self) -> List[str]:
        return [f for _, f, _, _ in string.Formatter().parse(self.template) if f]

    def render(self, ctx: EnvironmentContext) -> str:
        return self.template.format_map({name: ctx.resolve(name) for name in self.fields()})

    def __str__(self) -> str:
        return self.template


Arg = Union[str, Var, Fmt]


def var(name: str) -> Var:
    return Var(name)


def fmt(template: str) -> Fmt:
    return Fmt(template)


def render_arg(arg: Arg, ctx: EnvironmentContext) -> str:
    if isinstance(arg, (Var, Fmt)):
        return arg.render(ctx)
    return str(arg)


def render_args(args: Sequence[Arg], ctx: EnvironmentContext) -> List[str]:
    return [render_arg(a, ctx) for a in args]


# ---------------------------------------------------------------------
# Pre-flight construction
# ---------------------------------------------------------------------

def parse_assignments(pairs: Iterable[str]) -> Dict[str, str]:
    """Parse ["KEY=VALUE", ...] (as given on the command line)."""
    out: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        out[key] = value
    return out


def build_context(
    defaults: Optional[Mapping[str, object]] = None,
    overrides: Optional[Mapping[str, object]] = None,
    *,
    required: Sequence[str] = (),
    build_number: Optional[int] = None,
) -> EnvironmentContext:
    """
    Build the run context once, before any stage executes.

    Precedence (lowest to highest): pipeline defaults, overrides, BUILD_NUMBER.

    Raises:
        UndefinedVariable: if a required key is missing after merging.
    """
    ctx = EnvironmentContext(defaults).with_overrides(overrides)
    if build_number is not None:
        ctx = ctx.with_override("BUILD_NUMBER", build_number)
    ctx.require(*required)
    return ctx

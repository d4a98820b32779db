# guards.py
"""Run-if predicates over the environment context."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Callable, Mapping, Tuple


@dataclass(frozen=True)
class Guard:
    predicate: Callable[[Mapping[str, str]], bool]
    description: str

    def __call__(self, ctx: Mapping[str, str]) -> bool:
        return bool(self.predicate(ctx))

    def describe(self) -> str:
        return self.description

    def __and__(self, other: "Guard") -> "Guard":
        return all_of(self, other)

    def __or__(self, other: "Guard") -> "Guard":
        return any_of(self, other)

    def __invert__(self) -> "Guard":
        return not_(self)


def guard(fn: Callable[[Mapping[str, str]], bool], description: str | None = None) -> Guard:
    """Wrap any callable taking the context."""
    if isinstance(fn, Guard):
        return fn
    return Guard(fn, description or getattr(fn, "__name__", "custom guard"))


def always() -> Guard:
    return Guard(lambda ctx: True, "always")


def never() -> Guard:
    return Guard(lambda ctx: False, "never")


def on_branch(*patterns: str, variable: str = "BRANCH_NAME") -> Guard:
    """
    Only when the branch variable matches one of the glob patterns.

    A missing variable is an error (raised from the context), not "no match".
    """
    if not patterns:
        raise ValueError("on_branch() needs at least one pattern")

    def check(ctx: Mapping[str, str]) -> bool:
        branch = ctx[variable]
        return any(fnmatchcase(branch, p) for p in patterns)

    return Guard(check, f"{variable} matches {', '.join(patterns)}")


def when_set(key: str) -> Guard:
    return Guard(lambda ctx: bool(ctx.get(key)), f"{key} is set")


def when_equals(key: str, value: str) -> Guard:
    return Guard(lambda ctx: ctx[key] == str(value), f"{key} == {value!r}")


def all_of(*guards: Guard) -> Guard:
    gs: Tuple[Guard, ...] = tuple(guard(g) for g in guards)
    return Guard(lambda ctx: all(g(ctx) for g in gs), " and ".join(f"({g.description})" for g in gs))


def any_of(*guards: Guard) -> Guard:
    gs: Tuple[Guard, ...] = tuple(guard(g) for g in guards)
    return Guard(lambda ctx: any(g(ctx) for g in gs), " or ".join(f"({g.description})" for g in gs))


def not_(g: Guard) -> Guard:
    g = guard(g)
    return Guard(lambda ctx: not g(ctx), f"not ({g.description})")

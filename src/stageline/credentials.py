# credentials.py
from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, TypeVar, Union

from .errors import CredentialNotFound, CredentialScopeClosed, PipelineDefinitionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MASK = "****"


# ---------------------------------------------------------------------
# Secret material
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    value: str = field(repr=False)

    def secrets(self) -> Tuple[str, ...]:
        return (self.value,)


@dataclass(frozen=True)
class UsernamePassword:
    username: str = field(repr=False)
    password: str = field(repr=False)

    def secrets(self) -> Tuple[str, ...]:
        return (self.username, self.password)


Secret = Union[Token, UsernamePassword]
Provider = Union[Secret, Callable[[], Secret]]


class ScopedSecret:
    """
    Handle to a resolved secret, valid only inside its scope.

    Reading the secret after the scope exited raises CredentialScopeClosed.
    """

    def __init__(self, credential_id: str, secret: Secret):
        self.credential_id = credential_id
        self._secret: Optional[Secret] = secret

    def _material(self) -> Secret:
        if self._secret is None:
            raise CredentialScopeClosed(self.credential_id)
        return self._secret

    @property
    def active(self) -> bool:
        return self._secret is not None

    @property
    def is_pair(self) -> bool:
        return isinstance(self._material(), UsernamePassword)

    @property
    def value(self) -> str:
        s = self._material()
        if isinstance(s, UsernamePassword):
            return s.password
        return s.value

    @property
    def username(self) -> str:
        s = self._material()
        if not isinstance(s, UsernamePassword):
            raise TypeError(f"credential {self.credential_id!r} is a token, not a username/password pair")
        return s.username

    @property
    def password(self) -> str:
        return self.value

    def secrets(self) -> Tuple[str, ...]:
        return self._material().secrets()

    def invalidate(self) -> None:
        self._secret = None

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"ScopedSecret({self.credential_id!r}, {state})"


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class CredentialStore:
    """Registry of opaque credential handles, resolved lazily at use time."""

    def __init__(self, providers: Optional[Mapping[str, Provider]] = None):
        self._providers: Dict[str, Provider] = {}
        self._lock = threading.Lock()
        for cid, provider in (providers or {}).items():
            self.register(cid, provider)

    def register(self, credential_id: str, provider: Provider) -> None:
        if not credential_id:
            raise PipelineDefinitionError("credential id must not be empty")
        with self._lock:
            self._providers[credential_id] = provider

    def __contains__(self, credential_id: str) -> bool:
        return credential_id in self._providers

    def ids(self) -> List[str]:
        return sorted(self._providers)

    def _resolve(self, credential_id: str) -> Secret:
        with self._lock:
            provider = self._providers.get(credential_id)
        if provider is None:
            raise CredentialNotFound(credential_id)
        secret = provider() if callable(provider) else provider
        if not isinstance(secret, (Token, UsernamePassword)):
            raise TypeError(
                f"credential {credential_id!r} resolved to {type(secret).__name__}, "
                "expected Token or UsernamePassword"
            )
        return secret

    @contextmanager
    def scoped(self, credential_id: str) -> Iterator[ScopedSecret]:
        """Resolve a credential and expose it only for the `with` body."""
        handle = ScopedSecret(credential_id, self._resolve(credential_id))
        logger.debug("credential %s opened", credential_id)
        try:
            yield handle
        finally:
            handle.invalidate()
            logger.debug("credential %s closed", credential_id)

    def scope(self, credential_id: str, callback: Callable[[ScopedSecret], T]) -> T:
        """Run callback(secret) with the credential in scope and return its result."""
        with self.scoped(credential_id) as handle:
            return callback(handle)

    # ---- construction helpers ----
    @classmethod
    def from_env(
        cls,
        mapping: Mapping[str, str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "CredentialStore":
        """
        Register credentials read from environment variables at use time.

        mapping values are either "ENVVAR" (a token) or "USERVAR:PASSVAR"
        (a username/password pair).
        """
        store = cls()
        env = os.environ if environ is None else environ
        for cid, spec in mapping.items():
            store.register(cid, _env_provider(cid, spec, env))
        return store


def _env_provider(credential_id: str, spec: str, env: Mapping[str, str]) -> Callable[[], Secret]:
    user_var, sep, pass_var = spec.partition(":")

    def read(name: str) -> str:
        try:
            return env[name]
        except KeyError:
            raise CredentialNotFound(
                credential_id, details={"environment_variable": name}
            ) from None

    if sep:
        return lambda: UsernamePassword(read(user_var), read(pass_var))
    return lambda: Token(read(user_var))


def parse_secret_specs(pairs: Iterable[str]) -> Dict[str, str]:
    """Parse ["ID=ENVVAR", "ID=USERVAR:PASSVAR", ...] from the command line."""
    out: Dict[str, str] = {}
    for pair in pairs:
        cid, sep, spec = pair.partition("=")
        if not sep or not cid or not spec:
            raise ValueError(f"expected ID=ENVVAR or ID=USERVAR:PASSVAR, got {pair!r}")
        out[cid] = spec
    return out


# ---------------------------------------------------------------------
# Bindings: how a scoped secret reaches one action's process env
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TokenBinding:
    credential_id: str
    variable: str

    def export(self, handle: ScopedSecret) -> Dict[str, str]:
        return {self.variable: handle.value}


@dataclass(frozen=True)
class UsernamePasswordBinding:
    credential_id: str
    username_variable: str
    password_variable: str

    def export(self, handle: ScopedSecret) -> Dict[str, str]:
        return {
            self.username_variable: handle.username,
            self.password_variable: handle.password,
        }


Binding = Union[TokenBinding, UsernamePasswordBinding]


# ---------------------------------------------------------------------
# Masking
# ---------------------------------------------------------------------

class Masker:
    """Replaces every known secret value in captured text with ****."""

    def __init__(self, secrets: Iterable[str] = ()):
        self._secrets: List[str] = []
        self.add(*secrets)

    def add(self, *secrets: str) -> None:
        for s in secrets:
            if s and s not in self._secrets:
                self._secrets.append(s)
        # longest first so a secret containing another is fully masked
        self._secrets.sort(key=len, reverse=True)

    def __bool__(self) -> bool:
        return bool(self._secrets)

    def mask(self, text: str) -> str:
        if not text:
            return text
        for s in self._secrets:
            text = text.replace(s, MASK)
        return text

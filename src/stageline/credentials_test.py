import pytest

from stageline.credentials import (
    CredentialStore,
    Masker,
    Token,
    UsernamePassword,
    parse_secret_specs,
)
from stageline.errors import CredentialNotFound, CredentialScopeClosed


def test_scope_exposes_secret_only_inside_callback():
    store = CredentialStore({"sonar": Token("s3cr3t")})
    leaked = []

    value = store.scope("sonar", lambda h: (leaked.append(h), h.value)[1])

    assert value == "s3cr3t"
    with pytest.raises(CredentialScopeClosed):
        leaked[0].value


def test_scope_invalidates_on_exception():
    store = CredentialStore({"nexus": UsernamePassword("ci", "pw")})
    handles = []

    def boom(h):
        handles.append(h)
        raise RuntimeError("tool crashed")

    with pytest.raises(RuntimeError):
        store.scope("nexus", boom)

    assert not handles[0].active
    with pytest.raises(CredentialScopeClosed):
        handles[0].password


def test_unknown_credential():
    with pytest.raises(CredentialNotFound):
        CredentialStore().scope("missing", lambda h: None)


def test_provider_is_resolved_lazily_each_scope():
    calls = []

    def provider():
        calls.append(1)
        return Token(f"t{len(calls)}")

    store = CredentialStore()
    store.register("rotating", provider)
    assert calls == []

    assert store.scope("rotating", lambda h: h.value) == "t1"
    assert store.scope("rotating", lambda h: h.value) == "t2"


def test_repr_never_shows_secret():
    store = CredentialStore({"acr": UsernamePassword("svc-principal", "hunter2")})
    with store.scoped("acr") as h:
        assert "hunter2" not in repr(h)
    assert "hunter2" not in repr(UsernamePassword("u", "hunter2"))


def test_from_env_reads_at_use_time():
    env = {}
    store = CredentialStore.from_env({"gh": "GH_TOKEN", "acr": "ACR_USER:ACR_PASS"}, environ=env)

    with pytest.raises(CredentialNotFound):
        store.scope("gh", lambda h: h.value)

    env.update({"GH_TOKEN": "ghp_x", "ACR_USER": "u", "ACR_PASS": "p"})
    assert store.scope("gh", lambda h: h.value) == "ghp_x"
    assert store.scope("acr", lambda h: (h.username, h.password)) == ("u", "p")


def test_masker_masks_longest_first():
    m = Masker(["abc", "abcdef", ""])

    assert m.mask("token=abcdef and abc") == "token=**** and ****"
    assert m.mask("") == ""


def test_parse_secret_specs():
    assert parse_secret_specs(["a=X", "b=U:P"]) == {"a": "X", "b": "U:P"}
    with pytest.raises(ValueError):
        parse_secret_specs(["a"])

import pytest

from stageline.context import EnvironmentContext, build_context, fmt, parse_assignments, render_args, var
from stageline.errors import UndefinedVariable


def test_override_returns_derived_context_and_leaves_original_alone():
    base = EnvironmentContext({"IMAGE_TAG": "latest", "REGION": "eu-west-1"})

    derived = base.with_override("IMAGE_TAG", "42")

    assert base.resolve("IMAGE_TAG") == "latest"
    assert derived.resolve("IMAGE_TAG") == "42"
    assert derived.resolve("REGION") == "eu-west-1"


def test_resolve_missing_key_raises_undefined_variable():
    ctx = EnvironmentContext({"A": "1"})

    with pytest.raises(UndefinedVariable) as exc:
        ctx.resolve("UNSET_KEY")

    assert exc.value.key == "UNSET_KEY"
    assert "UNSET_KEY" in str(exc.value)


def test_context_is_immutable_and_values_are_strings():
    ctx = EnvironmentContext({"BUILD_NUMBER": 7})

    assert ctx["BUILD_NUMBER"] == "7"
    with pytest.raises(AttributeError):
        ctx.foo = "bar"
    with pytest.raises(TypeError):
        ctx._values["X"] = "y"


def test_mapping_get_and_contains_do_not_raise():
    ctx = EnvironmentContext({"A": "1"})

    assert ctx.get("B") is None
    assert ctx.get("B", "x") == "x"
    assert "A" in ctx and "B" not in ctx


def test_render_args_resolves_tokens():
    ctx = EnvironmentContext({"REGISTRY": "acr.example.io", "IMAGE_TAG": "42"})

    argv = render_args(["docker", "push", fmt("{REGISTRY}/app:{IMAGE_TAG}"), var("IMAGE_TAG")], ctx)

    assert argv == ["docker", "push", "acr.example.io/app:42", "42"]


def test_render_args_missing_variable_raises():
    with pytest.raises(UndefinedVariable):
        render_args([fmt("{REGISTRY}/app")], EnvironmentContext())


def test_build_context_precedence_and_required_keys():
    ctx = build_context({"IMAGE_TAG": "dev", "REGION": "us"}, {"IMAGE_TAG": "rc"}, required=["REGION"], build_number=12)

    assert ctx["IMAGE_TAG"] == "rc"
    assert ctx["BUILD_NUMBER"] == "12"

    with pytest.raises(UndefinedVariable):
        build_context({"REGION": "us"}, required=["CLUSTER_NAME"])


def test_parse_assignments():
    assert parse_assignments(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}
    with pytest.raises(ValueError):
        parse_assignments(["nope"])

import pytest

from stageline.actions import Command
from stageline.context import var
from stageline.dsl import CONTINUE_DEGRADED, build, cmd, pipeline, stage, token, with_credentials
from stageline.model import FailurePolicy
from stageline.notify import NotifySettings


def test_cmd_builds_structured_command():
    c = cmd("unit tests", "mvn", "-B", "test", var("MVN_PROFILE"), timeout=600)

    assert isinstance(c, Command)
    assert c.argv[:3] == ("mvn", "-B", "test")
    assert c.timeout == 600


def test_empty_command_is_rejected():
    with pytest.raises(ValueError):
        cmd("nothing")


def test_stage_helper():
    s = stage("scan", cmd("trivy", "trivy", "fs", "."), on_failure=CONTINUE_DEGRADED, env={"TRIVY_SEVERITY": "HIGH"})

    assert s.on_failure is FailurePolicy.CONTINUE_DEGRADED
    assert s.env == {"TRIVY_SEVERITY": "HIGH"}
    assert s.guard.describe() == "always"


def test_stage_builder():
    s = (
        build("test")
        .step("unit", "mvn", "test")
        .step("it", "mvn", "verify", cwd="it")
        .with_env(SPRING_PROFILES_ACTIVE="ci", RETRIES=3)
        .timeout(900)
        .degrade()
        .build()
    )

    assert [a.name for a in s.actions] == ["unit", "it"]
    assert s.env == {"SPRING_PROFILES_ACTIVE": "ci", "RETRIES": "3"}
    assert s.timeout == 900
    assert s.on_failure is FailurePolicy.CONTINUE_DEGRADED


def test_builder_without_actions_fails():
    with pytest.raises(ValueError):
        build("empty").build()


def test_with_credentials_adds_bindings_without_mutating():
    c = cmd("deploy", "deploy.sh")

    bound = with_credentials(c, token("gh", "GH_TOKEN"))

    assert c.credentials == ()
    assert bound.credential_ids() == ["gh"]


def test_pipeline_accepts_builders_and_merges_recipients():
    p = pipeline(
        "app",
        build("b").step("package", "mvn", "package"),
        stage("t", cmd("unit", "mvn", "test")),
        environment={"REGION": "eu"},
        notify=NotifySettings(recipients=("dev@example.com",)),
        recipients=["ops@example.com"],
    )

    assert [s.name for s in p.stages] == ["b", "t"]
    assert p.notify.recipients == ("dev@example.com", "ops@example.com")
    assert p.environment["REGION"] == "eu"

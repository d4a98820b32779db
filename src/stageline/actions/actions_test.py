import pytest

from stageline import http
from stageline.actions import (
    Apply,
    Build,
    Checkout,
    ImageBuild,
    Push,
    QualityGate,
    Query,
    RegistryLogin,
    RolloutStatus,
    Scan,
    Upload,
    maven_path,
)
from stageline.command import CancelToken, CommandStatus
from stageline.context import EnvironmentContext, fmt
from stageline.credentials import CredentialStore, Token, UsernamePassword
from stageline.dsl import pipeline, stage
from stageline.errors import ActionFailed, Cancelled, PipelineDefinitionError, Timeout
from stageline.executor import PipelineExecutor
from stageline.model import StageStatus
from stageline.testing import FakeRunner
from stageline.ui.console import Console

DIGEST = "sha256:" + "ab" * 32


def run_one(action, runner=None, ctx=None, creds=None, workspace=".", **kwargs):
    runner = runner or FakeRunner()
    executor = PipelineExecutor(
        runner,
        creds or CredentialStore(),
        console=Console(quiet=True),
        workspace=workspace,
    )
    run = executor.execute(pipeline("t", stage("s", action, **kwargs)), ctx or EnvironmentContext())
    return run, run.result("s")


# ---- scm ----

def test_checkout_clones_with_header_auth_and_masks_token(tmp_path):
    runner = FakeRunner().on("git", "clone", stdout="Cloning with tok-abc")
    creds = CredentialStore({"gh": Token("tok-abc")})
    action = Checkout("checkout", repo_url="https://git.example.com/app.git", ref=fmt("{GIT_COMMIT}"), dest="src", credential_id="gh")

    _, result = run_one(action, runner, EnvironmentContext({"GIT_COMMIT": "abc123"}), creds, tmp_path)

    clone, checkout = runner.calls
    assert clone.argv == ["git", "clone", "https://git.example.com/app.git", str(tmp_path.resolve() / "src")]
    assert checkout.argv == ["git", "checkout", "--force", "abc123"]
    assert clone.env["GIT_CONFIG_VALUE_0"] == "Authorization: Bearer tok-abc"
    assert all("tok-abc" not in a for a in clone.argv)
    assert "tok-abc" not in result.output
    assert result.outputs()["working_directory"] == str(tmp_path.resolve() / "src")


def test_checkout_fetches_existing_clone(tmp_path):
    (tmp_path / "src" / ".git").mkdir(parents=True)
    runner = FakeRunner()

    run_one(Checkout("checkout", repo_url="https://x/app.git", ref="main", dest="src"), runner, workspace=tmp_path)

    assert runner.commands()[0] == ["git", "fetch", "--tags", "origin"]


def test_checkout_failure_stops_before_checkout(tmp_path):
    runner = FakeRunner().on("git", "clone", exit_code=128, stderr="repository not found")

    _, result = run_one(Checkout("checkout", repo_url="https://x/nope.git"), runner, workspace=tmp_path)

    assert result.status is StageStatus.FAILED
    assert len(runner.calls) == 1
    assert "working_directory" not in result.outputs()


# ---- build ----

def test_build_collects_artifacts(tmp_path):
    def produce(call):
        (tmp_path / "target").mkdir(exist_ok=True)
        (tmp_path / "target" / "app-1.0.jar").write_bytes(b"PK")

    runner = FakeRunner().on("mvn", effect=produce)
    action = Build("package", argv=("mvn", "-B", "package"), artifacts=("target/*.jar",))

    _, result = run_one(action, runner, workspace=tmp_path)

    assert result.status is StageStatus.SUCCEEDED
    assert result.outputs()["artifacts"] == [str(tmp_path.resolve() / "target" / "app-1.0.jar")]


def test_build_without_artifacts_fails(tmp_path):
    action = Build("package", argv=("mvn", "package"), artifacts=("target/*.jar",))

    _, result = run_one(action, workspace=tmp_path)

    assert result.status is StageStatus.FAILED
    assert isinstance(result.error, ActionFailed)


# ---- scan ----

def test_advisory_scan_degrades_and_reports(tmp_path):
    def report(call):
        (tmp_path / "trivy.json").write_text("{}")

    runner = FakeRunner().on("trivy", exit_code=1, effect=report)
    action = Scan("trivy", argv=("trivy", "fs", "--format", "json", "-o", "trivy.json", "."), report="trivy.json", advisory=True)

    _, result = run_one(action, runner, workspace=tmp_path)

    assert result.status is StageStatus.UNSTABLE
    assert result.outputs()["report"] == str(tmp_path.resolve() / "trivy.json")


def test_blocking_scan_fails():
    runner = FakeRunner().on("trivy", exit_code=1)

    _, result = run_one(Scan("trivy", argv=("trivy", "image", "app")), runner)

    assert result.status is StageStatus.FAILED


class FakeGateServer:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def __call__(self, method, url, data=None, headers=None, timeout=None):
        self.requests.append((method, url, dict(headers or {})))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return http.Response(200, ('{"projectStatus": {"status": "%s"}}' % answer).encode())


def test_quality_gate_polls_until_verdict(monkeypatch):
    server = FakeGateServer(http.HTTPRequestError("not found", status=404), "NONE", "OK")
    monkeypatch.setattr(http, "request", server)
    creds = CredentialStore({"sonar": Token("sq-token")})
    gate = QualityGate("gate", server_url="https://sonar.example.com/", project_key="com.acme:app", credential_id="sonar", interval=0)

    _, result = run_one(gate, creds=creds)

    assert result.status is StageStatus.SUCCEEDED
    assert result.outputs() == {"polls": 3, "verdict": "OK"}
    method, url, headers = server.requests[0]
    assert url == "https://sonar.example.com/api/qualitygates/project_status?projectKey=com.acme%3Aapp"
    assert headers["Authorization"] == http.basic_auth("sq-token", "")


def test_quality_gate_error_verdict_fails(monkeypatch):
    monkeypatch.setattr(http, "request", FakeGateServer("ERROR"))

    _, result = run_one(QualityGate("gate", server_url="https://s", project_key="app", interval=0))

    assert result.status is StageStatus.FAILED
    assert result.error.details["verdict"] == "ERROR"


def test_quality_gate_times_out(monkeypatch):
    monkeypatch.setattr(http, "request", FakeGateServer("NONE"))
    ticks = iter(range(0, 1000, 10))
    gate = QualityGate("gate", server_url="https://s", project_key="app", wait=25, interval=0, clock=lambda: next(ticks))

    _, result = run_one(gate)

    assert isinstance(result.error, Timeout)


def test_quality_gate_server_error_fails(monkeypatch):
    monkeypatch.setattr(http, "request", FakeGateServer(http.HTTPRequestError("boom", status=500)))

    _, result = run_one(QualityGate("gate", server_url="https://s", project_key="app", interval=0))

    assert isinstance(result.error, ActionFailed)


def test_quality_gate_stops_when_cancelled(monkeypatch):
    cancel = CancelToken()

    def pending(*args, **kwargs):
        cancel.cancel("SIGINT")
        return http.Response(200, b'{"projectStatus": {"status": "NONE"}}')

    monkeypatch.setattr(http, "request", pending)
    executor = PipelineExecutor(FakeRunner(), CredentialStore(), console=Console(quiet=True))
    gate = QualityGate("gate", server_url="https://s", project_key="app", interval=60)

    run = executor.execute(pipeline("t", stage("s", gate)), EnvironmentContext(), cancel=cancel)

    assert isinstance(run.result("s").error, Cancelled)
    assert run.cancelled


def test_quality_gate_non_json_answer_fails_the_stage(monkeypatch):
    monkeypatch.setattr(http, "request", lambda *args, **kwargs: http.Response(200, b"<html>login</html>"))
    executor = PipelineExecutor(FakeRunner(), CredentialStore(), console=Console(quiet=True))
    pipe = pipeline(
        "t",
        stage("gate", QualityGate("gate", server_url="https://s", project_key="app", interval=0)),
        stage("deploy", Apply("apply", manifest="k8s/")),
    )

    run = executor.execute(pipe, EnvironmentContext())

    assert run.statuses() == [StageStatus.FAILED, StageStatus.SKIPPED]
    assert run.status is StageStatus.FAILED
    error = run.result("gate").error
    assert isinstance(error, ActionFailed)
    assert error.details["status"] == 200


def test_quality_gate_requests_never_outlive_the_deadline(monkeypatch):
    timeouts = []

    def pending(method, url, data=None, headers=None, timeout=None):
        timeouts.append(timeout)
        return http.Response(200, b'{"projectStatus": {"status": "NONE"}}')

    monkeypatch.setattr(http, "request", pending)
    ticks = iter(range(0, 1000, 10))
    gate = QualityGate("gate", server_url="https://s", project_key="app", wait=45, interval=0, clock=lambda: next(ticks))

    _, result = run_one(gate, timeout=20)

    assert isinstance(result.error, Timeout)
    # stage timeout caps each request, then the time left before the deadline does
    assert timeouts == [20, 15, 1.0]


# ---- registry ----

def test_maven_path():
    assert maven_path("com.acme:app:1.2.0") == "com/acme/app/1.2.0/app-1.2.0.jar"
    assert maven_path("com.acme:app:1.2.0:war") == "com/acme/app/1.2.0/app-1.2.0.war"
    assert maven_path("com.acme:app:1.2.0:jar:sources") == "com/acme/app/1.2.0/app-1.2.0-sources.jar"
    with pytest.raises(PipelineDefinitionError):
        maven_path("com.acme:app")


def test_upload_puts_artifact_with_basic_auth(tmp_path, monkeypatch):
    (tmp_path / "app.jar").write_bytes(b"PK\x03\x04")
    sent = []

    def fake_request(method, url, data=None, headers=None, timeout=None):
        sent.append((method, url, data, headers))
        return http.Response(201, b"")

    monkeypatch.setattr(http, "request", fake_request)
    creds = CredentialStore({"nexus": UsernamePassword("deployer", "n3xus")})
    action = Upload(
        "upload",
        local_path="app.jar",
        repository_url="https://nexus.example.com/repository/releases/",
        coordinates=fmt("com.acme:app:{VERSION}"),
        credential_id="nexus",
    )

    _, result = run_one(action, ctx=EnvironmentContext({"VERSION": "1.0.3"}), creds=creds, workspace=tmp_path)

    method, url, data, headers = sent[0]
    assert method == "PUT"
    assert url == "https://nexus.example.com/repository/releases/com/acme/app/1.0.3/app-1.0.3.jar"
    assert data == b"PK\x03\x04"
    assert headers["Authorization"] == http.basic_auth("deployer", "n3xus")
    assert result.status is StageStatus.SUCCEEDED


def test_upload_missing_file_fails(tmp_path):
    _, result = run_one(Upload("upload", local_path="nope.jar", repository_url="https://r", coordinates="g:a:1"), workspace=tmp_path)

    assert isinstance(result.error, ActionFailed)


def test_upload_with_bad_rendered_coordinates_fails_the_stage(tmp_path, monkeypatch):
    (tmp_path / "app.jar").write_bytes(b"PK")
    monkeypatch.setattr(http, "request", lambda *args, **kwargs: pytest.fail("nothing may be uploaded"))
    action = Upload("upload", local_path="app.jar", repository_url="https://r", coordinates=fmt("{COORD}"))

    run, result = run_one(action, ctx=EnvironmentContext({"COORD": "com.acme:app"}), workspace=tmp_path)

    assert result.status is StageStatus.FAILED
    assert isinstance(result.error, PipelineDefinitionError)
    assert result.error.action == "upload"
    assert run.status is StageStatus.FAILED


def test_upload_with_a_token_credential_fails_the_stage(tmp_path):
    (tmp_path / "app.jar").write_bytes(b"PK")
    creds = CredentialStore({"nexus": Token("tok-only")})
    action = Upload("upload", local_path="app.jar", repository_url="https://r", coordinates="g:a:1", credential_id="nexus")

    _, result = run_one(action, creds=creds, workspace=tmp_path)

    assert result.status is StageStatus.FAILED
    assert isinstance(result.error, ActionFailed)
    assert result.error.details["exception"] == "TypeError"


def test_upload_uses_the_stage_timeout(tmp_path, monkeypatch):
    (tmp_path / "app.jar").write_bytes(b"PK")
    timeouts = []

    def fake_request(method, url, data=None, headers=None, timeout=None):
        timeouts.append(timeout)
        return http.Response(201, b"")

    monkeypatch.setattr(http, "request", fake_request)

    run_one(Upload("upload", local_path="app.jar", repository_url="https://r", coordinates="g:a:1"), workspace=tmp_path, timeout=45)

    assert timeouts == [45]


def test_registry_login_uses_stdin():
    runner = FakeRunner()
    creds = CredentialStore({"acr": UsernamePassword("svc", "acr-pass")})

    run_one(RegistryLogin("login", registry="acr.example.io", credential_id="acr"), runner, creds=creds)

    call = runner.calls[0]
    assert call.argv == ["docker", "login", "acr.example.io", "-u", "svc", "--password-stdin"]
    assert call.input == "acr-pass\n"


def test_image_build_and_push_digest():
    runner = FakeRunner().on("docker", "push", stdout=f"latest: digest: {DIGEST} size: 1234")
    ctx = EnvironmentContext({"REGISTRY": "acr.example.io", "BUILD_NUMBER": "9"})
    image = fmt("{REGISTRY}/app:{BUILD_NUMBER}")

    _, result = run_one(ImageBuild("image", image=image, build_args={"JAR": "app.jar"}), runner, ctx)
    assert runner.calls[0].argv[:4] == ["docker", "build", "-t", "acr.example.io/app:9"]
    assert "JAR=app.jar" in runner.calls[0].argv

    _, result = run_one(Push("push", image=image), runner, ctx)
    assert result.outputs() == {"image": "acr.example.io/app:9", "digest": DIGEST}


# ---- cluster ----

def test_apply_and_rollout_complete(tmp_path):
    runner = FakeRunner()

    run_one(Apply("apply", manifest="k8s/deploy.yaml", namespace="prod"), runner, workspace=tmp_path)
    _, result = run_one(RolloutStatus("rollout", resource="deployment/app", namespace="prod", wait=120), runner)

    assert runner.calls[0].argv == ["kubectl", "apply", "-f", str(tmp_path.resolve() / "k8s/deploy.yaml"), "-n", "prod"]
    assert runner.calls[1].argv == ["kubectl", "rollout", "status", "deployment/app", "--timeout=120s", "-n", "prod"]
    assert runner.calls[1].timeout == 150
    assert result.outputs() == {"phase": "complete"}


def test_rollout_deadline_is_a_timeout():
    runner = FakeRunner().on("kubectl", exit_code=1, stderr='error: deployment "app" exceeded its progress deadline')

    _, result = run_one(RolloutStatus("rollout", resource="deployment/app"), runner)

    assert result.status is StageStatus.FAILED
    assert result.outputs() == {"phase": "timed_out"}
    assert isinstance(result.error, Timeout)


def test_rollout_process_timeout():
    runner = FakeRunner().on("kubectl", status=CommandStatus.TIMED_OUT)

    _, result = run_one(RolloutStatus("rollout", resource="deployment/app"), runner)

    assert result.outputs() == {"phase": "timed_out"}


def test_query_lists_names():
    out = "NAME          READY   STATUS\napp-7d9-abcde   1/1     Running\napp-7d9-fghij   1/1     Running\n"
    runner = FakeRunner().on("kubectl", "get", "pods", stdout=out)

    _, result = run_one(Query("pods", kind="pods", namespace="prod"), runner)

    assert result.outputs() == {"pods": ["app-7d9-abcde", "app-7d9-fghij"]}

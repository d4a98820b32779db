# stageline_pipeline.py
# Java service: build, scan, publish the jar and the image, deploy to the cluster on main.
from __future__ import annotations

from stageline.actions import (
    Apply,
    Build,
    Checkout,
    ImageBuild,
    Push,
    QualityGate,
    RegistryLogin,
    RolloutStatus,
    Scan,
    Upload,
    get_pods,
)
from stageline.context import fmt, var
from stageline.dsl import CONTINUE_DEGRADED, build, cmd, pipeline, stage, token
from stageline.guards import on_branch
from stageline.notify import NotifySettings

IMAGE = fmt("{REGISTRY}/orders-service:{BUILD_NUMBER}")


def build_pipeline():
    return pipeline(
        "orders-service",
        stage(
            "checkout",
            Checkout("checkout", repo_url=var("GIT_URL"), ref=var("GIT_COMMIT"), dest="work", credential_id="git"),
        ),
        stage(
            "build",
            Build(
                "package",
                argv=("mvn", "-B", "-DskipTests", "clean", "package"),
                project_dir="work",
                artifacts=("target/orders-service-*.jar",),
            ),
        ),
        build("test")
        .step("unit tests", "mvn", "-B", "test", cwd="work")
        .timeout(1800),
        stage(
            "code-quality",
            cmd(
                "sonar analysis",
                "mvn", "-B", "sonar:sonar",
                fmt("-Dsonar.host.url={SONAR_URL}"),
                "-Dsonar.projectKey=orders-service",
                cwd="work",
                credentials=[token("sonar", "SONAR_TOKEN")],
            ),
            QualityGate(
                "quality gate",
                server_url=var("SONAR_URL"),
                project_key="orders-service",
                credential_id="sonar",
                wait=600,
            ),
        ),
        stage(
            "dependency-scan",
            Scan(
                "trivy fs",
                argv=("trivy", "fs", "--exit-code", "1", "--severity", "HIGH,CRITICAL",
                      "--format", "json", "-o", "trivy-fs.json", "work"),
                report="trivy-fs.json",
                advisory=True,
            ),
        ),
        stage(
            "publish-jar",
            Upload(
                "upload jar",
                local_path=fmt("work/target/orders-service-{VERSION}.jar"),
                repository_url=var("NEXUS_URL"),
                coordinates=fmt("com.example:orders-service:{VERSION}"),
                credential_id="nexus",
            ),
            when=on_branch("main", "release/*"),
        ),
        stage(
            "image",
            RegistryLogin("registry login", registry=var("REGISTRY"), credential_id="registry"),
            ImageBuild("docker build", image=IMAGE, context_dir="work", build_args={"VERSION": var("VERSION")}),
            Scan(
                "trivy image",
                argv=("trivy", "image", "--exit-code", "1", "--format", "json", "-o", "trivy-image.json", IMAGE),
                report="trivy-image.json",
            ),
            Push("docker push", image=IMAGE),
            on_failure=CONTINUE_DEGRADED,
            when=on_branch("main"),
        ),
        stage(
            "deploy",
            cmd("set image", "kubectl", "set", "image", "deployment/orders-service",
                fmt("orders-service={REGISTRY}/orders-service:{BUILD_NUMBER}"), "-n", var("NAMESPACE")),
            Apply("apply manifests", manifest="work/k8s/", namespace=var("NAMESPACE")),
            RolloutStatus("rollout", resource="deployment/orders-service", namespace=var("NAMESPACE"), wait=300),
            get_pods("pods", namespace=var("NAMESPACE")),
            when=on_branch("main"),
            env={"NAMESPACE": "orders-prod"},
        ),
        environment={
            "VERSION": "1.4.0",
            "REGISTRY": "registry.example.com/platform",
            "SONAR_URL": "https://sonar.example.com",
            "NEXUS_URL": "https://nexus.example.com/repository/maven-releases",
            "NAMESPACE": "orders-staging",
        },
        required=["GIT_URL", "GIT_COMMIT", "BRANCH_NAME"],
        notify=NotifySettings(recipients=("orders-team@example.com",)),
        attachments=["work/target/surefire-reports/TEST-summary.xml"],
    )

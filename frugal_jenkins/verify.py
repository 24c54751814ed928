"""Verify that the Jenkins controller keeps its state across scale-to-zero."""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from .utils import gcloud, wait_for_http, CommandError, VerificationError

LIFECYCLE_AGES = ("30", "90", "180")


@dataclass
class VerificationReport:
    """Outcome of the persistence checks for one project."""

    service_url: Optional[str] = None
    bucket: Optional[str] = None
    lifecycle_ok: bool = False
    scaled: bool = False
    reachable: Optional[bool] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def jenkins_url(self) -> Optional[str]:
        if not self.service_url:
            return None
        return f"{self.service_url.rstrip('/')}/jenkins"


def _describe_service(service: str, region: str, project: str, fmt: str) -> str:
    return gcloud(
        "run",
        "services",
        "describe",
        service,
        "--platform=managed",
        f"--region={region}",
        f"--format={fmt}",
        project=project,
    )


def verify_persistence(
    project_id: str,
    service: str = "jenkins-ultra-frugal",
    region: str = "us-central1",
    bucket: Optional[str] = None,
    scale: bool = True,
    settle_seconds: float = 30,
    wait: bool = False,
) -> VerificationReport:
    """
    Check the Cloud Run service, its state bucket, and scale-to-zero settings.

    Args:
        project_id: GCP project ID
        service: Cloud Run service name
        region: Service region
        bucket: State bucket (defaults to ``<project>-jenkins-ultra-storage``)
        scale: Apply min-instances=0/max-instances=1 to the service
        settle_seconds: Wait after scaling
        wait: Poll the Jenkins URL over HTTP afterwards

    Returns:
        VerificationReport

    Raises:
        VerificationError: If the service or bucket is missing, or scaling fails
    """
    report = VerificationReport(bucket=bucket or f"{project_id}-jenkins-ultra-storage")

    print(f"🔍 Verifying Jenkins persistence for project: {project_id}")

    print("1. Checking Cloud Run service status...")
    try:
        _describe_service(service, region, project_id, "value(status.conditions[0].status)")
    except CommandError as e:
        raise VerificationError(f"Jenkins Cloud Run service '{service}' not found: {e}") from e
    print("✅ Cloud Run service exists")

    print("2. Checking GCS bucket configuration...")
    try:
        found = gcloud(
            "storage",
            "buckets",
            "list",
            f"--filter=name:{report.bucket}",
            "--format=value(name)",
            project=project_id,
        )
    except CommandError as e:
        raise VerificationError(f"Could not list storage buckets: {e}") from e
    if not found:
        raise VerificationError(f"Jenkins storage bucket not found: {report.bucket}")
    print(f"✅ GCS bucket exists: {report.bucket}")

    print("3. Checking bucket lifecycle for cost optimization...")
    try:
        ages = gcloud(
            "storage",
            "buckets",
            "describe",
            f"gs://{report.bucket}",
            "--format=value(lifecycle_config.rule[].condition.age)",
            project=project_id,
        )
    except CommandError:
        ages = ""
    report.lifecycle_ok = all(age in ages for age in LIFECYCLE_AGES)
    if report.lifecycle_ok:
        print("✅ Lifecycle rules configured properly (30/90/180 day transitions)")
    else:
        report.warnings.append("Lifecycle rules may need review")
        print("⚠️  Lifecycle rules may need review")

    if scale:
        print("4. Configuring scale-to-zero (min-instances=0, max-instances=1)...")
        try:
            gcloud(
                "run",
                "services",
                "update",
                service,
                "--platform=managed",
                f"--region={region}",
                "--min-instances=0",
                "--max-instances=1",
                "--quiet",
                project=project_id,
            )
        except CommandError as e:
            raise VerificationError(f"Failed to update service scaling: {e}") from e
        report.scaled = True
        if settle_seconds > 0:
            print(f"   Waiting {settle_seconds:g} seconds for scale down...")
            time.sleep(settle_seconds)

    try:
        report.service_url = _describe_service(service, region, project_id, "value(status.url)") or None
    except CommandError as e:
        report.warnings.append(f"Could not read service URL: {e}")

    if wait and report.jenkins_url:
        print(f"5. Waiting for {report.jenkins_url} to answer...")
        report.reachable = wait_for_http(f"{report.jenkins_url}/login", timeout=180, interval=5)
        if not report.reachable:
            report.warnings.append("Jenkins did not answer within 180 seconds")

    return report

"""Tests for the FastAPI routes."""

from __future__ import annotations

import textwrap

import pytest
from fastapi.testclient import TestClient

from src.api.server import create_app
from src.config import Settings
from src.notifications import NotificationManager
from src.services import build_services


@pytest.fixture
def services(tmp_path, registry):
    targets_file = tmp_path / "targets.yaml"
    targets_file.write_text(textwrap.dedent("""
        targets:
          - id: site
            url: https://site.test
            checks: [pass_check, fail_check]
            notification_channels:
              email: ops@site.test
          - id: healthy
            url: https://healthy.test
            priority: urgent
            checks: [pass_check]
    """), encoding="utf-8")
    cfg = Settings(
        db_path=str(tmp_path / "api.db"),
        targets_file=str(targets_file),
        check_max_retries=0,
        check_retry_delay=0,
        escalation_level_delay_minutes={1: 0, 2: 0, 3: 0},
    )
    return build_services(cfg, registry=registry, notifier=NotificationManager())


@pytest.fixture
def client(services):
    with TestClient(create_app(services, background=False)) as client:
        yield client


def _run_all(services) -> None:
    handlers = services.handlers
    while (job := services.queue.claim("test")) is not None:
        services.queue.complete(job, handlers[job.type](job))


class TestAPIRoutes:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_list_checks(self, client) -> None:
        checks = client.get("/api/checks").json()["checks"]
        assert {c["name"] for c in checks} >= {"pass_check", "fail_check"}
        assert all(c["enabled"] for c in checks)
        critical = client.get("/api/checks", params={"category": "critical"}).json()["checks"]
        assert [c["name"] for c in critical] == ["critical_check"]

    def test_targets_and_schedule(self, client) -> None:
        targets = client.get("/api/targets").json()["targets"]
        assert [t["id"] for t in targets] == ["site", "healthy"]
        assert targets[0]["schedule"] is None

        report = client.post("/api/scheduler/run").json()
        assert report["due"] == 2
        assert set(report["enqueued"]) == {"site", "healthy"}

        targets = client.get("/api/targets").json()["targets"]
        assert targets[0]["schedule"]["last_job_id"] == report["enqueued"]["site"]

    def test_scan_flow(self, client, services) -> None:
        client.post("/api/scheduler/run")
        jobs = client.get("/api/jobs", params={"status": "pending", "type": "scan"}).json()["jobs"]
        assert len(jobs) == 2

        _run_all(services)

        scans = client.get("/api/targets/site/scans").json()["scans"]
        assert scans[0]["status"] == "failed"
        escalations = client.get("/api/escalations").json()["escalations"]
        assert [e["target_id"] for e in escalations] == ["site"]
        # no email provider registered
        assert escalations[0]["notification_results"]["email"]["success"] is False

        stats = client.get("/api/escalations/stats").json()
        assert stats["active_escalations"] == 1

        resolved = client.post("/api/escalations/site/resolve", json={"reason": "fixed upstream"}).json()
        assert resolved["resolved"]["resolution_reason"] == "fixed upstream"
        assert client.get("/api/escalations").json()["escalations"] == []

    def test_unknown_target_scans(self, client) -> None:
        assert client.get("/api/targets/nope/scans").status_code == 404

    def test_queue_stats(self, client, services) -> None:
        services.queue.enqueue("scan", {"target_id": "site"})
        stats = client.get("/api/queue/stats").json()
        assert stats["by_status"]["pending"] == 1

    def test_job_lifecycle_endpoints(self, client, services) -> None:
        job_id = services.queue.enqueue("scan", {"target_id": "site"})
        assert client.get(f"/api/jobs/{job_id}").json()["status"] == "pending"

        resp = client.post(f"/api/jobs/{job_id}/cancel")
        assert resp.json()["job"]["status"] == "cancelled"
        assert client.post(f"/api/jobs/{job_id}/cancel").status_code == 409
        assert client.post("/api/jobs/9999/cancel").status_code == 404
        assert client.get("/api/jobs/9999").status_code == 404

    def test_requeue_dead_letter(self, client, services) -> None:
        job_id = services.queue.enqueue("scan", {"target_id": "gone"}, max_retries=0)
        job = services.queue.claim("test")
        services.queue.fail(job, "Unknown target: gone")
        assert client.get("/api/jobs", params={"status": "dead_letter"}).json()["jobs"][0]["id"] == job_id

        resp = client.post(f"/api/jobs/{job_id}/requeue")
        assert resp.status_code == 200
        assert resp.json()["job"]["status"] == "pending"
        assert client.post(f"/api/jobs/{job_id}/requeue").status_code == 409

    def test_invalid_status_filter(self, client) -> None:
        assert client.get("/api/jobs", params={"status": "bogus"}).status_code == 400

    def test_resolve_without_escalation(self, client) -> None:
        assert client.post("/api/escalations/site/resolve").json() == {"ok": True, "resolved": None}

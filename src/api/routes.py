"""Operator API — checks, targets, queue, scheduler, escalations.

Endpoints:
  GET  /api/checks                        — registered checks
  GET  /api/targets                       — configured targets + schedule
  GET  /api/targets/{id}/scans            — recent scan summaries
  GET  /api/queue/stats                   — queue depth and timings
  GET  /api/jobs                          — jobs (status / type filters)
  GET  /api/jobs/{id}                     — single job
  POST /api/jobs/{id}/cancel              — cancel a pending job
  POST /api/jobs/{id}/requeue             — re-drive a dead-lettered job
  POST /api/scheduler/run                 — run one scheduling pass now
  GET  /api/escalations                   — active escalations
  GET  /api/escalations/stats             — escalation statistics
  POST /api/escalations/{target_id}/resolve — resolve manually
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.errors import InvalidStateError, JobNotFoundError
from src.jobs.queue import JobStatus
from src.services import Services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request models ───────────────────────────────────────────────────────


class ResolveBody(BaseModel):
    reason: str = "manual"


# ── Helper ───────────────────────────────────────────────────────────────


def _services(request: Request) -> Services:
    return request.app.state.services  # type: ignore[no-any-return]


# ── Checks & targets ─────────────────────────────────────────────────────


@router.get("/checks")
def list_checks(request: Request, category: str | None = None) -> dict[str, Any]:
    registry = _services(request).registry
    return {"checks": [dict(p.info(), enabled=registry.is_enabled(p.name)) for p in registry.list(category=category)]}


@router.get("/targets")
def list_targets(request: Request) -> dict[str, Any]:
    svc = _services(request)
    schedules = {r.target_id: r.to_dict() for r in svc.schedules.list_all()}
    targets = svc.targets.to_dict()
    for t in targets:
        t["schedule"] = schedules.get(t["id"])
    return {"targets": targets}


@router.get("/targets/{target_id}/scans")
def target_scans(target_id: str, request: Request, limit: int = 20) -> dict[str, Any]:
    svc = _services(request)
    if svc.targets.get(target_id) is None:
        raise HTTPException(404, f"Target {target_id} not found")
    return {"target_id": target_id, "scans": svc.results.list_scans(target_id, limit=limit)}


# ── Queue ────────────────────────────────────────────────────────────────


@router.get("/queue/stats")
def queue_stats(request: Request) -> dict[str, Any]:
    return _services(request).queue.statistics()


@router.get("/jobs")
def list_jobs(
    request: Request,
    status: str | None = None,
    type: str | None = None,
    limit: int = 100,
) -> dict[str, Any]:
    if status is not None and status not in {s.value for s in JobStatus}:
        raise HTTPException(400, f"Invalid status: {status}")
    jobs = _services(request).queue.list_jobs(status=status, job_type=type, limit=limit)
    return {"jobs": [j.to_dict() for j in jobs]}


@router.get("/jobs/{job_id}")
def get_job(job_id: int, request: Request) -> dict[str, Any]:
    try:
        return _services(request).queue.get(job_id).to_dict()
    except JobNotFoundError as e:
        raise HTTPException(404, str(e)) from e


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: int, request: Request) -> dict[str, Any]:
    try:
        job = _services(request).queue.cancel_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(409, str(e)) from e
    return {"ok": True, "job": job.to_dict()}


@router.post("/jobs/{job_id}/requeue")
def requeue_job(job_id: int, request: Request) -> dict[str, Any]:
    try:
        job = _services(request).queue.requeue(job_id)
    except JobNotFoundError as e:
        raise HTTPException(404, str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(409, str(e)) from e
    return {"ok": True, "job": job.to_dict()}


# ── Scheduler ────────────────────────────────────────────────────────────


@router.post("/scheduler/run")
def run_scheduler(request: Request) -> dict[str, Any]:
    report = _services(request).scheduler.run_scheduling_pass()
    return report.to_dict()


# ── Escalations ──────────────────────────────────────────────────────────


@router.get("/escalations")
def list_escalations(request: Request) -> dict[str, Any]:
    return {"escalations": [e.to_dict() for e in _services(request).evaluator.list_active()]}


@router.get("/escalations/stats")
def escalation_stats(request: Request, days: int = 7) -> dict[str, Any]:
    return _services(request).evaluator.statistics(days)


@router.post("/escalations/{target_id}/resolve")
def resolve_escalation(target_id: str, request: Request, body: ResolveBody | None = None) -> dict[str, Any]:
    svc = _services(request)
    reason = body.reason if body else "manual"
    escalation = svc.evaluator.resolve_escalation(target_id, reason, target=svc.targets.get(target_id))
    return {"ok": True, "resolved": escalation.to_dict() if escalation else None}

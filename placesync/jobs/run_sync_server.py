"""HTTP entrypoint that triggers sync and dedup jobs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from placesync.core.config import HIGH_TRAFFIC_REGIONS, get_settings
from placesync.jobs.clean_duplicates import clean_duplicates
from placesync.jobs.run_sync import log_summary
from placesync.sync.grid import grid_from_settings
from placesync.sync.orchestrator import RunLease, build_orchestrator

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=2)
_lease = RunLease()

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/status")
def status() -> Any:
    return jsonify({"data": {"running": _lease.is_running, "holder": _lease.holder}}), 200


@app.post("/sync")
def enqueue_sync() -> Any:
    """
    Enqueue a grid sweep.
    Optional JSON fields: limit (int), unprocessed (bool), region (str)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    limit_raw = payload.get("limit")
    limit = None
    if limit_raw is not None:
        try:
            limit = int(limit_raw)
        except (TypeError, ValueError):
            return jsonify({"error": "limit must be numeric"}), 400
        if limit <= 0:
            return jsonify({"error": "limit must be positive"}), 400

    region = payload.get("region")
    if region is not None and region not in HIGH_TRAFFIC_REGIONS:
        return jsonify({"error": f"unknown region: {region}"}), 400

    if _lease.is_running:
        return jsonify({"error": f"sync already running: {_lease.holder}"}), 409

    job_args = dict(
        limit=limit,
        unprocessed=bool(payload.get("unprocessed", False)),
        region=region,
    )
    logger.info("Queueing sync job: %s", job_args)
    _executor.submit(_run_job_safe, job_args)
    return jsonify({"data": {"status": "queued"}}), 202


@app.post("/dedup")
def enqueue_dedup() -> Any:
    exact_only = bool((request.get_json(silent=True) or {}).get("exact_only", False))
    if _lease.is_running:
        return jsonify({"error": f"sync already running: {_lease.holder}"}), 409
    logger.info("Queueing dedup job: exact_only=%s", exact_only)
    _executor.submit(_run_dedup_safe, exact_only)
    return jsonify({"data": {"status": "queued"}}), 202


# ---------- Internals ----------


def run_sync(limit: Optional[int] = None, unprocessed: bool = False, region: Optional[str] = None) -> None:
    settings = get_settings()
    orchestrator = build_orchestrator(settings, lease=_lease)
    if region:
        summary = orchestrator.sync_region(region, limit or settings.high_traffic_limit, spacing_km=settings.spacing_km)
    elif unprocessed:
        summary = orchestrator.sync_unprocessed(grid_from_settings(settings), limit=limit)
    else:
        points = grid_from_settings(settings)
        summary = orchestrator.run(points[:limit] if limit else points, label="http")
    log_summary(summary)


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    try:
        run_sync(**job_args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Sync job failed: %s", exc)


def _run_dedup_safe(exact_only: bool) -> None:
    # Merges delete rows a concurrent sweep may be upserting into.
    with _lease.hold("dedup") as acquired:
        if not acquired:
            logger.info("Dedup skipped: %s is still running", _lease.holder)
            return
        try:
            clean_duplicates(exact_only=exact_only)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Dedup job failed: %s", exc)


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()

"""
Health check HTTP server for liveness and readiness probes.

Besides "is the database reachable", the detailed endpoint reports the things
an operator of a governance engine actually gets paged for: proposals past
their deadline that no sweep has resolved, and passed laws whose execution
failed or was interrupted.
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from governance_engine import __version__
from governance_engine.kernel.logging import get_logger
from governance_engine.kernel.store import to_db_time
from governance_engine.kernel.time import RealTimeProvider, TimeProvider

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - set by initialize_health_server()
_db_path: Path | None = None
_time_provider: TimeProvider = RealTimeProvider()


def initialize_health_server(
    db_path: str | Path, time_provider: TimeProvider | None = None
) -> None:
    """
    Initialize the health server with the engine's database path.

    Args:
        db_path: Path to SQLite database
        time_provider: Clock used to decide which proposals are overdue
    """
    global _db_path, _time_provider
    _db_path = Path(db_path)
    _time_provider = time_provider or RealTimeProvider()
    logger.info("health probes bound to governance database", db_path=str(_db_path))


@app.after_request
def add_security_headers(response: Any) -> Any:
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """Liveness probe - the process is running."""
    return jsonify({"status": "alive", "service": "governance-engine"}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness probe - the proposals table can be queried.

    Returns:
        200 if ready, 503 with a reason if not
    """
    if _db_path is None:
        logger.warning("not ready: no governance database configured")
        return jsonify({"status": "not_ready", "reason": "database_path_not_initialized"}), 503

    if not _db_path.exists():
        logger.warning("not ready: governance database missing", db_path=str(_db_path))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_file_not_found",
                    "db_path": str(_db_path),
                }
            ),
            503,
        )

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            proposal_count = conn.execute("SELECT COUNT(*) FROM proposals").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error("not ready: governance database unreadable", error=str(e))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_operational_error",
                    "error": str(e),
                }
            ),
            503,
        )

    logger.debug("ready", proposal_count=proposal_count)
    return (
        jsonify({"status": "ready", "database": "accessible", "proposal_count": proposal_count}),
        200,
    )


def _proposal_counts(db_path: Path) -> dict[str, int]:
    now = to_db_time(_time_provider.now())
    conn = sqlite3.connect(str(db_path), timeout=1.0)
    try:
        by_status = dict(
            conn.execute("SELECT status, COUNT(*) FROM proposals GROUP BY status").fetchall()
        )
        overdue = conn.execute(
            "SELECT COUNT(*) FROM proposals WHERE status = 'PENDING' AND expires_at <= ?",
            (now,),
        ).fetchone()[0]
        by_execution = dict(
            conn.execute(
                "SELECT execution_status, COUNT(*) FROM proposals "
                "WHERE execution_status IS NOT NULL GROUP BY execution_status"
            ).fetchall()
        )
        vote_count = conn.execute("SELECT COUNT(*) FROM votes").fetchone()[0]
    finally:
        conn.close()

    return {
        "pending": by_status.get("PENDING", 0),
        "passed": by_status.get("PASSED", 0),
        "rejected": by_status.get("REJECTED", 0),
        "overdue_pending": overdue,
        "stalled_executions": by_execution.get("PENDING", 0),
        "failed_executions": by_execution.get("FAILED", 0),
        "votes": vote_count,
    }


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """
    Detailed health check - database plus proposal backlog.

    Overdue proposals and failed or stalled executions are reported as
    warnings; they need a sweep or a retry, not a restart.
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": "governance-engine",
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            counts = _proposal_counts(_db_path)
        except sqlite3.Error as e:
            logger.error("governance backlog query failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
        else:
            health_data["database"] = {"status": "healthy", "path": str(_db_path)}
            health_data["proposals"] = counts
            warnings = []
            if counts["overdue_pending"]:
                warnings.append("overdue_pending_proposals")
            if counts["stalled_executions"]:
                warnings.append("stalled_executions")
            if counts["failed_executions"]:
                warnings.append("failed_executions")
            health_data["warnings"] = warnings
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Serve the probes with Flask's built-in server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("serving health probes", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)

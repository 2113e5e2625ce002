"""
Prometheus metrics for the governance engine.

Counts proposals, votes, resolutions and law executions, and times the
resolution sweep.
"""

from prometheus_client import Counter, Histogram, start_http_server

# ============================================================================
# Proposal & Vote Metrics
# ============================================================================

proposals_created_total = Counter(
    "governance_proposals_created_total",
    "Total number of proposals created",
    ["law_kind", "governance_kind"],
)

proposals_refused_total = Counter(
    "governance_proposals_refused_total",
    "Total number of proposal attempts refused",
    ["law_kind", "reason"],
)

votes_cast_total = Counter(
    "governance_votes_cast_total",
    "Total number of votes recorded",
    ["law_kind", "choice"],
)

votes_refused_total = Counter(
    "governance_votes_refused_total",
    "Total number of vote attempts refused",
    ["reason"],
)

# ============================================================================
# Resolution Metrics
# ============================================================================

proposals_resolved_total = Counter(
    "governance_proposals_resolved_total",
    "Total number of terminal transitions won by this process",
    ["law_kind", "status", "path"],  # path: sweep, fast_track, instant, early
)

resolution_races_lost_total = Counter(
    "governance_resolution_races_lost_total",
    "Transitions skipped because another resolver already resolved the proposal",
    ["path"],
)

sweep_duration_seconds = Histogram(
    "governance_sweep_duration_seconds",
    "Duration of a resolve_expired sweep in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ============================================================================
# Execution Metrics
# ============================================================================

law_executions_total = Counter(
    "governance_law_executions_total",
    "Law handler dispatch outcomes",
    ["law_kind", "status"],  # status: succeeded, failed, skipped
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)

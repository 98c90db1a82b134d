"""Prometheus metrics for the place data-quality pipeline."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("place_pipeline", "Place data-quality pipeline info")
app_info.info({"version": "0.1.0", "name": "place-pipeline"})

# Batch metrics (quality scans, badge sweeps, refresh runs)
batch_runs_total = Counter(
    "pipeline_batch_runs_total",
    "Total number of pipeline batch runs",
    ["batch", "status"],
)

batch_item_errors_total = Counter(
    "pipeline_batch_item_errors_total",
    "Per-item failures recovered inside a batch",
    ["batch"],
)

batch_duration_seconds = Histogram(
    "pipeline_batch_duration_seconds",
    "Wall time of one pipeline batch run",
    ["batch"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

batch_last_run_timestamp = Gauge(
    "pipeline_batch_last_run_timestamp",
    "Timestamp of last batch run",
    ["batch"],
)

# Scoring metrics
places_scored_total = Counter(
    "places_scored_total",
    "Total number of places scored",
)

quality_score_distribution = Histogram(
    "place_quality_score",
    "Distribution of computed quality scores",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)

# Refresh queue metrics
refresh_jobs_enqueued_total = Counter(
    "refresh_jobs_enqueued_total",
    "Refresh jobs created",
    ["reason", "priority"],
)

refresh_jobs_deduplicated_total = Counter(
    "refresh_jobs_deduplicated_total",
    "Enqueue calls absorbed by an existing active job",
)

refresh_job_transitions_total = Counter(
    "refresh_job_transitions_total",
    "Refresh job state transitions",
    ["status"],
)

refresh_jobs_exhausted_total = Counter(
    "refresh_jobs_exhausted_total",
    "Refresh jobs that failed at the attempt ceiling",
    ["reason"],
)

# Badge metrics
badge_recomputations_total = Counter(
    "badge_recomputations_total",
    "Per-place badge recomputations",
    ["trigger", "result"],
)


def record_batch_run(batch: str, duration: float, item_errors: int, success: bool = True):
    """Record a finished batch run."""
    status = "success" if success else "error"
    batch_runs_total.labels(batch=batch, status=status).inc()
    batch_duration_seconds.labels(batch=batch).observe(duration)
    batch_last_run_timestamp.labels(batch=batch).set(time.time())
    if item_errors:
        batch_item_errors_total.labels(batch=batch).inc(item_errors)


def record_place_scored(score: int):
    """Record a scored place."""
    places_scored_total.inc()
    quality_score_distribution.observe(score)


def record_job_enqueued(reason: str, priority: str, is_new: bool):
    """Record an enqueue attempt."""
    if is_new:
        refresh_jobs_enqueued_total.labels(reason=reason, priority=priority).inc()
    else:
        refresh_jobs_deduplicated_total.inc()


def record_job_transition(status: str):
    """Record a refresh job state transition."""
    refresh_job_transitions_total.labels(status=status).inc()


def record_job_exhausted(reason: str):
    """Record a refresh job failing for the last time."""
    refresh_jobs_exhausted_total.labels(reason=reason).inc()


def record_badge_recompute(trigger: str, changed: bool):
    """Record one place's badge recomputation."""
    result = "changed" if changed else "unchanged"
    badge_recomputations_total.labels(trigger=trigger, result=result).inc()

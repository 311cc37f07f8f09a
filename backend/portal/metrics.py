# backend/portal/metrics.py
from prometheus_client import Counter, Histogram

from portal.schemas.deliverable import DeliverableStatus
from portal.schemas.feedback import FeedbackStatus
from portal.schemas.revision import RevisionStatus

# === Core metrics (definitions ONLY here) ===
feedback_submitted_total = Counter(
    "feedback_submitted_total", "Feedback entries created", ["status"]
)

deliverable_transitions_total = Counter(
    "deliverable_transitions_total", "Deliverable status transitions", ["target"]
)

revision_transitions_total = Counter(
    "revision_transitions_total", "Revision status changes", ["status"]
)

permission_denied_total = Counter(
    "permission_denied_total", "Workflow actions denied by a permission gate", ["operation"]
)

activity_log_failures_total = Counter(
    "activity_log_failures_total", "Activity log appends that failed and were dropped"
)

request_latency_seconds = Histogram(
    "request_latency_seconds", "Request latency"
)

def init_metrics_zero():
    # create label combos at 0 so dashboards never see "no data"
    for s in FeedbackStatus:
        feedback_submitted_total.labels(status=s.value).inc(0)
    for t in DeliverableStatus:
        deliverable_transitions_total.labels(target=t.value).inc(0)
    for r in RevisionStatus:
        revision_transitions_total.labels(status=r.value).inc(0)

    # unlabeled counters – make them visible
    activity_log_failures_total.inc(0)

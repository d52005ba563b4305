"""
Prometheus metrics: submissions, status changes, rejected transitions, cancellations.
"""
from prometheus_client import Counter, generate_latest

orders_submitted_total = Counter(
    "orders_submitted_total",
    "Total purchase orders created",
)
duplicate_submissions_total = Counter(
    "duplicate_submissions_total",
    "Total order submissions ignored because the idempotency key was already used",
)

# scope: item | order
status_changes_total = Counter(
    "status_changes_total",
    "Total accepted status changes",
    ["scope", "status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total status changes rejected by the workflow or the user's allow-list",
    ["current_status", "attempted_status"],
)

orders_canceled_total = Counter(
    "orders_canceled_total",
    "Total orders canceled as a whole",
)
orders_deleted_total = Counter(
    "orders_deleted_total",
    "Total orders permanently deleted",
)
attachments_uploaded_total = Counter(
    "attachments_uploaded_total",
    "Total attachment files stored",
    ["file_type"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()

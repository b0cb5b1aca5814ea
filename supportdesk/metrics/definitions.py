"""Metrics emitted by the support services."""
from __future__ import annotations

from dataclasses import dataclass

TICKET_TRANSITIONS = "supportdesk_ticket_transitions_total"
TICKET_REPLIES = "supportdesk_ticket_replies_total"
CHAT_MESSAGES = "supportdesk_chat_messages_total"
CHAT_SESSION_CHANGES = "supportdesk_chat_session_changes_total"
STORE_CONFLICTS = "supportdesk_store_conflicts_total"
MUTATION_RETRIES = "supportdesk_mutation_retries_total"
MUTATION_DURATION = "supportdesk_mutation_duration_seconds"
HUB_DELIVERIES = "supportdesk_hub_deliveries_total"
HUB_DELIVERY_FAILURES = "supportdesk_hub_delivery_failures_total"
HUB_SUBSCRIBERS = "supportdesk_hub_subscriptions_total"
AUDIT_FAILURES = "supportdesk_audit_failures_total"
SLA_SWEEP_UPDATES = "supportdesk_sla_sweep_updates_total"
SLA_SWEEP_FAILURES = "supportdesk_sla_sweep_failures_total"


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition(
        TICKET_TRANSITIONS,
        "counter",
        "Ticket actions by outcome.",
        ("action", "outcome"),
    ),
    MetricDefinition(TICKET_REPLIES, "counter", "Ticket replies posted.", ("sender",)),
    MetricDefinition(CHAT_MESSAGES, "counter", "Chat messages admitted.", ("sender",)),
    MetricDefinition(CHAT_SESSION_CHANGES, "counter", "Chat session management actions by outcome.", ("action", "outcome")),
    MetricDefinition(STORE_CONFLICTS, "counter", "Stale writes detected by the store.", ("entity",)),
    MetricDefinition(MUTATION_RETRIES, "counter", "Mutations re-run after a stale write.", ("operation",)),
    MetricDefinition(MUTATION_DURATION, "distribution", "Duration of orchestrated mutations.", ("operation",)),
    MetricDefinition(HUB_DELIVERIES, "counter", "Events delivered to subscribers.", ("event",)),
    MetricDefinition(HUB_DELIVERY_FAILURES, "counter", "Subscriber sends that failed or timed out.", ("event",)),
    MetricDefinition(HUB_SUBSCRIBERS, "counter", "Channel subscriptions opened.", ("transport",)),
    MetricDefinition(AUDIT_FAILURES, "counter", "Audit entries that could not be written."),
    MetricDefinition(SLA_SWEEP_UPDATES, "counter", "Tickets whose SLA status changed during a sweep.", ("sla_status",)),
    MetricDefinition(SLA_SWEEP_FAILURES, "counter", "SLA sweep runs that raised."),
)

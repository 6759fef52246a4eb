"""Credit card approval service: scoring, admin review, remote approvals and an event outbox."""

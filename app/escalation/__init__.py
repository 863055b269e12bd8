"""Agent directory, assignment policies and the escalation manager."""

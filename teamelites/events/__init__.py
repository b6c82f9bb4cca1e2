"""Event bus and JSONL telemetry for swarm activity."""

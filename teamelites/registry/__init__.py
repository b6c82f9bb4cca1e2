"""The swarm registry — agent directory, elite archive and routing counters,
persisted as a single JSON document per data directory.
"""

"""TEAM-Elites evolution — MAP-Elites search over team blueprints.

One elite per niche. Each generation selects a parent, varies it,
evaluates the child and commits it through the Hub when it beats the
incumbent.
"""

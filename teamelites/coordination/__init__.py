"""Clients for the Thoughtbox Hub and Gateway, plus the reasoning bridge
that shares context between swarm agents.
"""

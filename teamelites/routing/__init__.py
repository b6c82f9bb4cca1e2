"""Message routing — niche classification and per-agent queues.

- NicheMatcher: message -> (channel, domain) niche
- SwarmManager: routes to the niche's agent and processes queues concurrently
"""

"""NicheMatcher — message to niche classification.

The channel dimension comes straight from the message; the domain is picked
by keyword heuristics, no LLM call involved.
"""

from __future__ import annotations

from teamelites.types import Domain, InboundMessage, NicheDescriptor

# Declaration order matters: ties go to the earlier domain.
DOMAIN_KEYWORDS: dict[Domain, tuple[str, ...]] = {
    Domain.CODING: (
        "code", "coding", "debug", "function", "bug", "compile", "error",
        "typescript", "javascript", "python", "api", "implement", "algorithm",
        "syntax", "variable", "class", "import", "module", "test", "deploy",
        "refactor", "git", "commit", "merge", "pr", "pull request",
    ),
    Domain.RESEARCH: (
        "research", "paper", "study", "analyze", "analysis", "dataset",
        "literature", "investigate", "hypothesis", "experiment", "survey",
        "findings", "methodology", "citation", "journal", "review",
        "evidence", "theory", "data",
    ),
    Domain.SCHEDULING: (
        "schedule", "meeting", "calendar", "reminder", "book", "appointment",
        "plan", "event", "deadline", "agenda", "availability", "slot",
        "reschedule", "postpone", "cancel meeting",
    ),
    Domain.COMMUNICATION: (
        "email", "message", "notify", "reply", "compose", "draft",
        "announcement", "broadcast", "newsletter", "memo", "letter",
        "outreach", "follow up", "reach out",
    ),
}


def classify_domain(text: str) -> Domain:
    """Score each domain by substring hits; zero hits means GENERAL."""
    lower = text.lower()
    best_domain = Domain.GENERAL
    best_score = 0

    for domain, keywords in DOMAIN_KEYWORDS.items():
        score = sum(1 for kw in keywords if kw in lower)
        if score > best_score:
            best_score = score
            best_domain = domain

    return best_domain


def match_niche(msg: InboundMessage) -> NicheDescriptor:
    """Map an inbound message to its niche."""
    return NicheDescriptor.of(msg.channel, classify_domain(msg.text))


def parse_niche_key(key: str) -> NicheDescriptor:
    """Inverse of ``NicheDescriptor.key``: ``"telegram-coding"`` -> niche.

    Channel ids may themselves contain dashes, so the domain is the last
    segment. Raises ValueError for an unknown domain.
    """
    channel, sep, domain = key.rpartition("-")
    if not sep or not channel:
        raise ValueError(f"Malformed niche key: {key!r}")
    return NicheDescriptor.of(channel, Domain(domain))

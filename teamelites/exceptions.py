"""Custom exception hierarchy for teamelites."""


class TeamElitesError(Exception):
    """Base for all teamelites errors."""


class PersistenceError(TeamElitesError):
    """The swarm registry could not be read or written."""


class CollaboratorError(TeamElitesError):
    """An external collaborator RPC failed."""


class HubError(CollaboratorError):
    """The Hub returned a JSON-RPC error or an unusable response."""


class GatewayError(CollaboratorError):
    """The reasoning Gateway returned a JSON-RPC error."""


class ProvisioningError(TeamElitesError):
    """A live agent could not be created for a niche."""

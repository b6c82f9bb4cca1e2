"""Provisioning — materializes the live agent behind a merged elite."""

from teamelites.provisioning.provisioner import (
    AgentService,
    DefaultSwarmProvisioner,
    SwarmProvisioner,
)

__all__ = ["AgentService", "DefaultSwarmProvisioner", "SwarmProvisioner"]

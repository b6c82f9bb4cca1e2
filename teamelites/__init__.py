"""teamelites — niche routing and MAP-Elites evolution for agent swarms."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("teamelites")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development

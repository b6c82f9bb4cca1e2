"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings

from teamelites.types import EvolutionConfig, FitnessWeights


class TeamElitesSettings(BaseSettings):
    data_dir: Path = Path(".teamelites")
    log_level: str = "INFO"

    # Single-mode fallback when the registry has no agent id yet
    agent_id: str = ""

    # Thoughtbox collaborators
    hub_url: str = "http://localhost:1731/mcp"
    gateway_url: str = "http://localhost:1731/mcp"
    rpc_timeout: float = 30.0

    # Evolution settings
    evolution_interval_hours: float = 6.0
    population_size: int = 5
    max_agents: int = 25
    crossover_rate: float = 0.0  # chance of prompt crossover before mutation

    # Fitness weight overrides
    fitness_w1: float = 0.35  # task completion
    fitness_w2: float = 0.25  # review score
    fitness_w3: float = 0.15  # reasoning depth
    fitness_w4: float = 0.10  # consensus speed
    fitness_w5: float = 0.15  # cost efficiency

    # Reasoning bridge
    reasoning_enabled: bool = False
    reasoning_max_context_thoughts: int = 5
    reasoning_max_thought_length: int = 200

    telemetry_enabled: bool = True

    model_config = {"env_prefix": "TEAMELITES_"}

    def evolution_config(self) -> EvolutionConfig:
        return EvolutionConfig(
            interval_hours=self.evolution_interval_hours,
            population_size=self.population_size,
            max_agents=self.max_agents,
            crossover_rate=self.crossover_rate,
            fitness_weights=FitnessWeights(
                w1=self.fitness_w1,
                w2=self.fitness_w2,
                w3=self.fitness_w3,
                w4=self.fitness_w4,
                w5=self.fitness_w5,
            ),
        )


settings = TeamElitesSettings()

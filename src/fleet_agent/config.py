"""Agent settings loaded from environment variables and .env file."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Runtime configuration for the instance agent.

    Every field can be overridden with a FLEET_AGENT_ prefixed environment
    variable (e.g. FLEET_AGENT_COORDINATOR_URL).
    """

    model_config = SettingsConfigDict(env_prefix="FLEET_AGENT_", env_file=".env")

    identity: str = Field(default="instance-agent", description="Agent identity")
    coordinator_url: str = Field(
        default="http://localhost:9080", description="Base URL of the coordinator"
    )
    request_timeout: float = Field(default=10.0, gt=0)

    state_dir: str = Field(default="./state")
    log_dir: str = Field(default="./logs")
    motd_dir: Optional[str] = Field(
        default=None, description="Directory holding motd, motd-complete, motd-failed"
    )

    control_host: str = Field(default="127.0.0.1")
    control_port: int = Field(default=12316)

    # Seconds to wait for decommission scripts before forcing shutdown
    shutdown_delay: float = Field(default=180.0, ge=0)
    # Seconds to wait for the cloud to shut the instance down
    force_shutdown_delay: float = Field(default=180.0, ge=0)
    decommission_wait_timeout: float = Field(default=600.0, gt=0)

    reenroll_threshold: int = Field(default=3, ge=1)
    # Must exceed the two hour period at which offline mode casts votes
    reenroll_reset_delay: float = Field(default=7200.0, gt=0)
    reenroll_command: str = Field(default="rs_reenroll")
    shutdown_command: str = Field(default="shutdown -h now")


settings = AgentSettings()

__all__ = ["AgentSettings", "settings"]

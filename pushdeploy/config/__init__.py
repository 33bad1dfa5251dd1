"""pushdeploy configuration module.

Configuration is loaded from the following sources (in order of priority):
1. Command-line flags (highest priority)
2. PUSHDEPLOY_* environment variables
3. The project's .env file
4. ./deploy.toml (project root)
5. ~/.config/pushdeploy/deploy.toml (user defaults)

The loader lives in pushdeploy.config.loader and is imported from there;
the remote pipeline only needs the schema.
"""

from pushdeploy.config.schema import DeployConfig, RemoteSettings

__all__ = [
    "DeployConfig",
    "RemoteSettings",
]

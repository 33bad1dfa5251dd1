"""Pydantic models for pushdeploy configuration.

These models define the structure of the ``[deploy]`` table in deploy.toml
and the settings record that travels to the remote host.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class RemoteSettings(BaseModel):
    """Settings the remote pipeline needs, uploaded beside the archive."""

    model_config = ConfigDict(frozen=True)

    command: str = "./run"
    signal: str = "SIGHUP"
    ping_path: str = "/"
    pid_path: str
    app_port: int = 8000
    hostname: str = "localhost"
    pre_deploy: str | None = None
    post_deploy: str | None = None
    rollback: bool = True
    ping_timeout: float = 5.0
    ping_delay: float = 2.0
    start_grace: float = 1.0


class DeployConfig(BaseModel):
    """Immutable deployment configuration.

    Options left unset fall back to values derived from others: the deploy
    path from the application name, the PID file from the deploy path and
    the health-check Host header from the SSH host.
    """

    model_config = ConfigDict(frozen=True)

    # Application
    name: str | None = None
    version_file: str = "VERSION"
    branch: str | None = None
    bundle_command: str | None = None
    ignore_files: list[str] = Field(default_factory=lambda: [".gitignore", ".deployignore"])

    # Connection
    host: str | None = None
    port: int = 22
    user: str = "deploy"
    identity: Path | None = None
    remote_python: str = "python3"
    remote_tmp: str = "/tmp"

    # Remote layout and process control
    deploy_path: str | None = None
    command: str = "./run"
    signal: str = "SIGHUP"
    pid_path: str | None = None

    # Health check
    ping_path: str = "/"
    app_port: int = 8000
    hostname: str | None = None

    # Hooks
    pre_deploy: str | None = None
    post_deploy: str | None = None
    hooks_file: str | None = None
    rollback: bool = True

    # Release marker
    tag: bool = True
    git_remote: str = "origin"

    # Timeouts in seconds
    connect_timeout: int = 10
    transfer_timeout: float = 600.0
    remote_timeout: float = 1800.0
    ping_timeout: float = 5.0
    ping_delay: float = 2.0
    start_grace: float = 1.0

    @property
    def remote_base(self) -> str:
        """Remote base directory holding releases/ and current."""
        if self.deploy_path:
            return self.deploy_path.rstrip("/") or "/"
        return f"/var/www/{self.name or 'app'}"

    @property
    def pid_file(self) -> str:
        """PID file written by the running application server."""
        return self.pid_path or f"{self.remote_base}/shared/server.pid"

    @property
    def probe_hostname(self) -> str:
        return self.hostname or self.host or "localhost"

    def remote_settings(self) -> RemoteSettings:
        """Project the subset of options the remote pipeline uses."""
        return RemoteSettings(
            command=self.command,
            signal=self.signal,
            ping_path=self.ping_path,
            pid_path=self.pid_file,
            app_port=self.app_port,
            hostname=self.probe_hostname,
            pre_deploy=self.pre_deploy,
            post_deploy=self.post_deploy,
            rollback=self.rollback,
            ping_timeout=self.ping_timeout,
            ping_delay=self.ping_delay,
            start_grace=self.start_grace,
        )

"""
Deployment exceptions.

Every failure is fatal to the process that detects it. Entry points turn
these into a highlighted message and exit status 1.
"""


class DeployError(Exception):
    """Base class for all deployment failures."""
    pass


class ConfigurationError(DeployError):
    """
    Raised before any work begins when the configuration is unusable.

    Examples:
        - No remote host configured
        - Version marker file missing
        - Unknown restart signal name
    """
    pass


class BuildError(DeployError):
    """
    Raised when local packaging fails.

    Nothing has been sent to the remote host when this is raised.
    """
    pass


class TransportError(DeployError):
    """
    Raised when copying to, or invoking on, the remote host fails.

    When the failure happens during the remote invocation the pipeline may
    have partially run; the message says so.
    """
    pass


class StepError(DeployError):
    """Raised when a remote pipeline step reports failure."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message

"""
Deployment hooks - extension points of the remote pipeline.

Three capabilities are offered to the operator:
    - pre_deploy(release): runs against the extracted tree before activation
    - post_deploy(release): runs after the health check
    - on_step(name, outcome): notified after every step, success or not

A non-zero pre/post outcome aborts the pipeline. on_step is a notification
only; whatever it returns or raises never changes the run.

Hooks come from two places:
    - shell commands in the configuration (ShellHooks)
    - a Python file shipped with the deploy, defining any of the three
      functions (load_hooks_file)
"""

import importlib.util
import logging
import os
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from pushdeploy.exceptions import ConfigurationError

if TYPE_CHECKING:
    from pushdeploy.pipeline import Release

logger = logging.getLogger(__name__)

HOOK_NAMES = ("pre_deploy", "post_deploy", "on_step")


class Hooks:
    """No-op hooks. Subclasses override what they need."""

    def pre_deploy(self, release: "Release") -> int:
        return 0

    def post_deploy(self, release: "Release") -> int:
        return 0

    def on_step(self, name: str, outcome: int) -> None:
        return None


def release_environment(release: "Release") -> dict[str, str]:
    """Environment passed to hook commands."""
    env = dict(os.environ)
    env.update({
        "PUSHDEPLOY_RELEASE_ID": release.release_id,
        "PUSHDEPLOY_RELEASE_DIR": str(release.release_dir),
        "PUSHDEPLOY_APP_NAME": release.name,
        "PUSHDEPLOY_DEPLOY_PATH": str(release.deploy_path),
    })
    return env


class ShellHooks(Hooks):
    """Runs configured shell commands inside the new release directory."""

    def __init__(self, pre_command: str | None = None, post_command: str | None = None):
        self.pre_command = pre_command
        self.post_command = post_command

    def _run(self, command: str | None, release: "Release") -> int:
        if not command:
            return 0
        logger.info(f"  $ {command}")
        result = subprocess.run(
            command,
            shell=True,
            cwd=release.release_dir,
            env=release_environment(release),
            check=False,
        )
        return result.returncode

    def pre_deploy(self, release: "Release") -> int:
        return self._run(self.pre_command, release)

    def post_deploy(self, release: "Release") -> int:
        return self._run(self.post_command, release)


class ModuleHooks(Hooks):
    """Hooks defined as plain functions, falling back to another Hooks."""

    def __init__(self, functions: dict[str, Callable], fallback: Hooks | None = None):
        self.functions = functions
        self.fallback = fallback or Hooks()

    def pre_deploy(self, release: "Release") -> int:
        func = self.functions.get("pre_deploy")
        if func is None:
            return self.fallback.pre_deploy(release)
        return func(release) or 0

    def post_deploy(self, release: "Release") -> int:
        func = self.functions.get("post_deploy")
        if func is None:
            return self.fallback.post_deploy(release)
        return func(release) or 0

    def on_step(self, name: str, outcome: int) -> None:
        func = self.functions.get("on_step")
        if func is None:
            self.fallback.on_step(name, outcome)
        else:
            func(name, outcome)


def load_hooks_file(path: Path, fallback: Hooks | None = None) -> ModuleHooks:
    """Load hook functions from a Python file.

    Args:
        path: File defining any of pre_deploy, post_deploy, on_step
        fallback: Hooks used for functions the file does not define

    Raises:
        ConfigurationError: If the file is missing or fails to import.
    """
    if not path.is_file():
        raise ConfigurationError(f"Hooks file not found: {path}")

    spec = importlib.util.spec_from_file_location("pushdeploy_user_hooks", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load hooks file: {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigurationError(f"Error importing hooks file {path}: {e}") from e

    functions = {
        name: getattr(module, name)
        for name in HOOK_NAMES
        if callable(getattr(module, name, None))
    }
    logger.debug(f"Loaded hooks from {path}: {', '.join(functions) or 'none'}")
    return ModuleHooks(functions, fallback)

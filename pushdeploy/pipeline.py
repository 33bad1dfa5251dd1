"""
RemotePipeline - activate a release on the host it was copied to.

Layout under the deploy path:
    releases/<release-id>/   one extracted copy per release, never modified
    current                  symlink to the active release
    shared/                  server log (and by default the PID file)
    .deploy.lock             held for the whole run

Steps, in order, first failure aborts:
    1. verify       archive SHA-1 matches the expected checksum
    2. extract      unpack into releases/<id> (via a hidden partial dir)
    3. pre_deploy   hook, against the new tree, before activation
    4. link         atomically repoint current
    5. activate     start the server, or signal the running one
    6. ping         HTTP probe on localhost
    7. post_deploy  hook

Until link succeeds, current is untouched and the old release keeps serving.
"""

import fcntl
import logging
import os
import shutil
import signal
import subprocess
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal

import requests
from pydantic import BaseModel, Field

from pushdeploy.config.schema import RemoteSettings
from pushdeploy.digest import checksum
from pushdeploy.exceptions import ConfigurationError, DeployError, StepError
from pushdeploy.hooks import Hooks
from pushdeploy.steps import StepResult, StepRunner

logger = logging.getLogger(__name__)

RESULT_PREFIX = "PUSHDEPLOY-RESULT "

STEP_NAMES = ("verify", "extract", "pre_deploy", "link", "activate", "ping", "post_deploy")

# Steps after which current already points at the new release
POST_LINK_STEPS = ("activate", "ping", "post_deploy")

ABORT_MESSAGES = {
    "lock": "another deployment is in progress",
    "verify": "checksum mismatch, archive corrupted in transfer",
    "extract": "failed to extract archive",
    "pre_deploy": "pre-deploy hook failed",
    "link": "failed to switch current release",
    "activate": "failed to start the application server",
    "ping": "server not responding",
    "post_deploy": "post-deploy hook failed, rolling back",
}


@dataclass(frozen=True)
class Release:
    """One release as seen by the remote host."""

    archive: Path
    deploy_path: Path
    name: str
    release_id: str
    checksum: str

    @property
    def releases_dir(self) -> Path:
        return self.deploy_path / "releases"

    @property
    def release_dir(self) -> Path:
        return self.releases_dir / self.release_id

    @property
    def current(self) -> Path:
        return self.deploy_path / "current"

    @property
    def shared_dir(self) -> Path:
        return self.deploy_path / "shared"

    @property
    def lock_file(self) -> Path:
        return self.deploy_path / ".deploy.lock"


class PipelineResult(BaseModel):
    """Structured outcome of a pipeline run, sent back to the local side."""

    release_id: str
    status: Literal["success", "aborted"]
    steps: list[StepResult] = Field(default_factory=list)
    failed_step: str | None = None
    message: str | None = None
    rolled_back: bool = False

    @property
    def exit_code(self) -> int:
        return 0 if self.status == "success" else 1

    def to_line(self) -> str:
        return RESULT_PREFIX + self.model_dump_json()

    @classmethod
    def from_output(cls, output: str) -> "PipelineResult | None":
        """Find the result line in a remote command's standard output."""
        for line in reversed(output.splitlines()):
            if line.startswith(RESULT_PREFIX):
                return cls.model_validate_json(line[len(RESULT_PREFIX):])
        return None


def resolve_signal(name: str) -> signal.Signals:
    """Map HUP, SIGHUP or a number to a signal."""
    name = name.strip().upper()
    if name.isdigit():
        return signal.Signals(int(name))
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise ConfigurationError(f"Unknown signal: {name}") from None


def read_pid(pid_path: Path) -> int | None:
    """PID recorded by the application server, or None without a PID file.

    Raises:
        StepError: If the file exists but does not hold a PID.
    """
    if not pid_path.exists():
        return None
    text = pid_path.read_text().strip()
    try:
        return int(text)
    except ValueError:
        raise StepError("activate", f"PID file {pid_path} does not contain a PID: {text!r}") from None


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


@dataclass
class RemotePipeline:
    """Runs the activation steps for one release."""

    release: Release
    settings: RemoteSettings
    hooks: Hooks = field(default_factory=Hooks)
    previous: Path | None = field(default=None, init=False)
    server: subprocess.Popen | None = field(default=None, init=False)

    def __post_init__(self):
        self.runner = StepRunner(self.hooks)
        self.restart_signal = resolve_signal(self.settings.signal)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def verify(self) -> int:
        actual = checksum(self.release.archive)
        if actual != self.release.checksum.strip().lower():
            raise StepError(
                "verify",
                f"checksum mismatch for {self.release.archive.name}: "
                f"expected {self.release.checksum}, got {actual}",
            )
        return 0

    def extract(self) -> int:
        target = self.release.release_dir
        if target.exists():
            raise StepError("extract", f"release directory already exists: {target}")

        partial = self.release.releases_dir / f".{self.release.release_id}.partial"
        shutil.rmtree(partial, ignore_errors=True)
        partial.mkdir(parents=True)
        try:
            with tarfile.open(self.release.archive, "r:*") as tar:
                tar.extractall(partial, filter="data")
            partial.rename(target)
        except (OSError, tarfile.TarError) as e:
            shutil.rmtree(partial, ignore_errors=True)
            raise StepError("extract", f"failed to extract {self.release.archive.name}: {e}") from e
        return 0

    def pre_deploy(self) -> int:
        return self.run_hook("pre_deploy", self.hooks.pre_deploy)

    def link(self) -> int:
        current = self.release.current
        if current.is_symlink():
            self.previous = Path(os.readlink(current))
        self.switch_current(self.release.release_dir)
        return 0

    def switch_current(self, target: Path) -> None:
        """Point current at target with a single rename."""
        current = self.release.current
        tmp = current.with_name(f".current.{os.getpid()}")
        tmp.unlink(missing_ok=True)
        tmp.symlink_to(target)
        os.replace(tmp, current)

    def activate(self) -> int:
        pid = read_pid(Path(self.settings.pid_path))
        if pid is not None and process_alive(pid):
            logger.info(f"  Sending {self.restart_signal.name} to PID {pid}")
            os.kill(pid, self.restart_signal)
            return 0
        if pid is not None:
            logger.warning(f"  PID file names dead process {pid}, starting fresh")
        return self.start_server()

    def start_server(self) -> int:
        self.release.shared_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.release.shared_dir / "server.log"
        logger.info(f"  Starting: {self.settings.command}")

        with open(log_file, "a") as log:
            self.server = subprocess.Popen(
                self.settings.command,
                shell=True,
                cwd=self.release.current,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )

        time.sleep(self.settings.start_grace)
        code = self.server.poll()
        if code is not None:
            raise StepError("activate", f"server exited with status {code}, see {log_file}")
        logger.info(f"  Server started with PID {self.server.pid}")
        return 0

    def ping(self) -> int:
        url = f"http://localhost:{self.settings.app_port}{self.settings.ping_path}"
        if self.settings.ping_delay:
            time.sleep(self.settings.ping_delay)
        logger.info(f"  GET {url} (Host: {self.settings.hostname})")
        try:
            response = requests.get(
                url,
                headers={"Host": self.settings.hostname},
                timeout=self.settings.ping_timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            raise StepError("ping", f"server not responding: {e}") from e

        if not 200 <= response.status_code < 400:
            raise StepError("ping", f"server not responding: HTTP {response.status_code}")
        return 0

    def post_deploy(self) -> int:
        return self.run_hook("post_deploy", self.hooks.post_deploy)

    def run_hook(self, step: str, hook: Callable[[Release], int]) -> int:
        """Call operator hook code; anything it raises fails the step."""
        try:
            return int(hook(self.release) or 0)
        except DeployError:
            raise
        except Exception as e:
            logger.error(f"  {step} hook raised", exc_info=True)
            raise StepError(step, f"{ABORT_MESSAGES[step]}: {type(e).__name__}: {e}") from e

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def rollback(self) -> bool:
        """Re-link the previous release and restart the running server.

        Returns True once current points at the previous release again, even
        if the server could not be restarted afterwards.
        """
        if self.previous is None:
            logger.warning("No previous release to roll back to; current stays on the new release")
            return False

        logger.warning(f"Rolling back current to {self.previous}")
        try:
            self.switch_current(self.previous)
        except OSError as e:
            logger.error(f"Rollback failed, current still points at the new release: {e}")
            return False

        try:
            self.restart_previous()
        except (OSError, StepError, subprocess.TimeoutExpired) as e:
            logger.error(f"Re-linked {self.previous} but could not restart the server: {e}")
        return True

    def restart_previous(self) -> None:
        if self.server is not None:
            # Started by this run from the new release: replace it
            if self.server.poll() is None:
                os.killpg(self.server.pid, signal.SIGTERM)
                self.server.wait(timeout=10)
            self.server = None
            self.start_server()
            return
        pid = read_pid(Path(self.settings.pid_path))
        if pid is not None and process_alive(pid):
            os.kill(pid, self.restart_signal)

    def abort(self, result: StepResult) -> PipelineResult:
        message = result.message or ABORT_MESSAGES[result.name]
        if result.message is None and result.outcome != 1:
            message = f"{message} (exit status {result.outcome})"

        rolled_back = False
        if result.name in POST_LINK_STEPS and self.settings.rollback:
            rolled_back = self.rollback()

        return PipelineResult(
            release_id=self.release.release_id,
            status="aborted",
            steps=list(self.runner.results),
            failed_step=result.name,
            message=message,
            rolled_back=rolled_back,
        )

    def run(self) -> PipelineResult:
        """Run every step in order under the deploy lock."""
        self.release.deploy_path.mkdir(parents=True, exist_ok=True)
        with open(self.release.lock_file, "w") as lock:
            try:
                fcntl.flock(lock, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                result = StepResult(name="lock", outcome=1, message=ABORT_MESSAGES["lock"])
                return PipelineResult(
                    release_id=self.release.release_id,
                    status="aborted",
                    steps=[result],
                    failed_step="lock",
                    message=result.message,
                )
            try:
                return self._run_steps()
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def _run_steps(self) -> PipelineResult:
        total = len(STEP_NAMES)
        for number, name in enumerate(STEP_NAMES, start=1):
            logger.info(f"[{number}/{total}] {name}")
            result = self.runner.run(name, getattr(self, name))
            if not result.ok:
                return self.abort(result)

        logger.info(f"Release {self.release.release_id} is live")
        return PipelineResult(
            release_id=self.release.release_id,
            status="success",
            steps=list(self.runner.results),
        )

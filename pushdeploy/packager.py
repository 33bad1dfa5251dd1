"""Local packaging: version marker, ignore patterns, archive and checksum.

The packager never touches the network. A failure here aborts the whole
deployment before anything is copied to the remote host.
"""

import fnmatch
import logging
import os
import shutil
import tarfile
import tempfile
import tomllib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from invoke.context import Context

from pushdeploy.config.schema import DeployConfig
from pushdeploy.digest import checksum
from pushdeploy.exceptions import BuildError, ConfigurationError

logger = logging.getLogger(__name__)

# Always excluded from the archive, whatever the ignore files say
BUILTIN_EXCLUDES = [".git/", ".env", "deploy.toml", "__pycache__/", "*.pyc"]


@dataclass(frozen=True)
class Artifact:
    """A packaged release ready to be transferred."""

    name: str
    version: str
    release_id: str
    archive: Path
    checksum: str

    @property
    def tag(self) -> str:
        """Name of the release marker created after a successful deploy."""
        return f"{self.name}-v{self.version}.{self.release_id}"


# =============================================================================
# Naming
# =============================================================================

def release_id(now: datetime | None = None) -> str:
    """Timestamp identifier of a release, YYYYMMDDHHmm."""
    return (now or datetime.now()).strftime("%Y%m%d%H%M")


def archive_name(name: str, version: str, timestamp: str) -> str:
    return f"{name}-v{version}.{timestamp}.tar.gz"


def read_version(project_dir: Path, version_file: str) -> tuple[str | None, str]:
    """Read the version marker of the working tree.

    Args:
        project_dir: Project root
        version_file: Plain text file holding the version on its first line,
                      or a pyproject.toml

    Returns:
        (name, version); name is only known for pyproject.toml markers.

    Raises:
        ConfigurationError: If the marker is missing or holds no version.
    """
    path = project_dir / version_file
    if not path.is_file():
        raise ConfigurationError(f"Version marker not found: {path}")

    name = None
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            project = tomllib.load(f).get("project", {})
        name = project.get("name")
        version = str(project.get("version", "")).strip()
    else:
        lines = path.read_text().strip().splitlines()
        version = lines[0].strip() if lines else ""

    if not version:
        raise ConfigurationError(f"No version found in {path}")
    return name, version


# =============================================================================
# Ignore patterns
# =============================================================================

def load_ignore_patterns(project_dir: Path, ignore_files: list[str]) -> list[str]:
    """Merge the ignore sources that exist with the built-in exclusions."""
    patterns = list(BUILTIN_EXCLUDES)
    patterns.extend(f"/{name}" for name in ignore_files)

    for name in ignore_files:
        path = project_dir / name
        if not path.is_file():
            continue
        logger.debug(f"Reading ignore patterns from {path}")
        for line in path.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("!"):
                logger.warning(f"Negated pattern not supported, skipping: {line} ({name})")
                continue
            patterns.append(line)

    # Keep first occurrence order, drop duplicates
    return list(dict.fromkeys(patterns))


def is_ignored(rel_path: str, patterns: list[str], is_dir: bool = False) -> bool:
    """Match a POSIX relative path against gitignore-like patterns.

    A trailing slash restricts a pattern to directories, a leading slash
    anchors it at the project root, and a pattern containing a slash is
    matched against the whole path. Anything else matches any component.
    """
    parts = rel_path.split("/")
    for pattern in patterns:
        dir_only = pattern.endswith("/")
        pat = pattern.rstrip("/")
        if not pat:
            continue
        if dir_only and not is_dir:
            continue

        if pat.startswith("/") or "/" in pat:
            if fnmatch.fnmatchcase(rel_path, pat.lstrip("/")):
                return True
        elif fnmatch.fnmatchcase(parts[-1], pat):
            return True
    return False


def iter_files(project_dir: Path, patterns: list[str]):
    """Yield (path, relative name) for every file kept in the archive.

    Ignored directories are pruned, so nothing below them is visited.
    """
    for root, dirs, files in os.walk(project_dir):
        rel_root = Path(root).relative_to(project_dir).as_posix()
        prefix = "" if rel_root == "." else f"{rel_root}/"

        dirs[:] = sorted(d for d in dirs if not is_ignored(prefix + d, patterns, is_dir=True))
        for filename in sorted(files):
            rel = prefix + filename
            if not is_ignored(rel, patterns):
                yield Path(root) / filename, rel


# =============================================================================
# Archive
# =============================================================================

def create_archive(project_dir: Path, output: Path, patterns: list[str]) -> int:
    """Write a gzip tarball of the filtered tree.

    Returns:
        Number of files archived

    Raises:
        BuildError: If the archive cannot be written.
    """
    count = 0
    try:
        with tarfile.open(output, "w:gz") as tar:
            for path, rel in iter_files(project_dir, patterns):
                tar.add(path, arcname=rel, recursive=False)
                count += 1
    except (OSError, tarfile.TarError) as e:
        raise BuildError(f"Failed to create archive {output}: {e}") from e
    return count


# =============================================================================
# Working tree preparation
# =============================================================================

def checkout_branch(ctx: Context, project_dir: Path, branch: str) -> None:
    """Check out the branch to deploy. Mutates the local working tree."""
    logger.info(f"Checking out branch {branch}")
    with ctx.cd(str(project_dir)):
        result = ctx.run(f"git checkout {branch}", hide=True, warn=True)
    if not result.ok:
        raise BuildError(f"git checkout {branch} failed:\n{result.stderr.strip()}")


def bundle_dependencies(ctx: Context, project_dir: Path, command: str) -> None:
    """Run the dependency bundling command in the project root."""
    logger.info(f"Bundling dependencies: {command}")
    with ctx.cd(str(project_dir)):
        result = ctx.run(command, hide=True, warn=True)
    if not result.ok:
        output = (result.stderr or result.stdout).strip()
        raise BuildError(f"Dependency bundling failed ({command}):\n{output[-1000:]}")


class Packager:
    """Builds the deployable archive of a working tree."""

    def __init__(self, config: DeployConfig, project_dir: Path, ctx: Context | None = None):
        self.config = config
        self.project_dir = project_dir
        self.ctx = ctx or Context()
        self.workdir: Path | None = None

    def build(self, now: datetime | None = None) -> Artifact:
        """Check out, bundle, archive and checksum the working tree.

        The archive lands in a fresh temporary directory; call cleanup()
        when it is no longer needed.
        """
        if self.config.branch:
            checkout_branch(self.ctx, self.project_dir, self.config.branch)
        if self.config.bundle_command:
            bundle_dependencies(self.ctx, self.project_dir, self.config.bundle_command)

        marker_name, version = read_version(self.project_dir, self.config.version_file)
        name = self.config.name or marker_name or self.project_dir.resolve().name

        rid = release_id(now)
        self.workdir = Path(tempfile.mkdtemp(prefix="pushdeploy-"))
        output = self.workdir / archive_name(name, version, rid)

        patterns = load_ignore_patterns(self.project_dir, self.config.ignore_files)
        count = create_archive(self.project_dir, output, patterns)
        digest = checksum(output)
        logger.info(f"Packaged {count} files into {output.name} (sha1 {digest})")

        return Artifact(
            name=name,
            version=version,
            release_id=rid,
            archive=output,
            checksum=digest,
        )

    def cleanup(self) -> None:
        if self.workdir is None:
            return
        shutil.rmtree(self.workdir, ignore_errors=True)
        self.workdir = None

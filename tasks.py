"""Invoke tasks for pushdeploy development."""

from pathlib import Path

from invoke import task
from invoke.context import Context


@task
def test(ctx: Context, verbose: bool = False, coverage: bool = False) -> None:
    """Run the test suite.

    Args:
        ctx: Invoke context
        verbose: Enable verbose output
        coverage: Run with coverage report
    """
    cmd = "pytest"
    if verbose:
        cmd += " -v"
    if coverage:
        cmd += " --cov=pushdeploy --cov-report=term-missing"
    ctx.run(cmd, pty=True)


@task
def bundle(ctx: Context, output: str = "dist/pushdeploy.pyz") -> None:
    """Build the remote pipeline program that deploys upload.

    Args:
        ctx: Invoke context
        output: Where to write the zipapp (default: dist/pushdeploy.pyz)
    """
    from pushdeploy.transport import build_program_bundle

    target = Path(output)
    target.parent.mkdir(parents=True, exist_ok=True)
    build_program_bundle(target)
    print(f"Bundle written to {target}")


@task
def deploy(ctx: Context, host: str = "", branch: str = "", verbose: bool = False) -> None:
    """Deploy the current project with pushdeploy.

    Args:
        ctx: Invoke context
        host: Remote host (default: from deploy.toml)
        branch: Branch to check out before packaging
        verbose: Enable debug logging
    """
    cmd = "pushdeploy"
    if host:
        cmd += f" --host {host}"
    if branch:
        cmd += f" --branch {branch}"
    if verbose:
        cmd += " -v"
    ctx.run(cmd, pty=True)


@task
def clean(ctx: Context) -> None:
    """Clean up temporary files."""
    for pattern in ["__pycache__", "*.pyc", "*.pyo", ".pytest_cache"]:
        ctx.run(f"find . -name '{pattern}' -exec rm -rf {{}} + 2>/dev/null || true", warn=True)

    for path in ["build", "dist", "*.egg-info", ".eggs"]:
        ctx.run(f"rm -rf {path} 2>/dev/null || true", warn=True)

    print("Cleanup complete")

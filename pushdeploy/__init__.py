"""pushdeploy - push-style deployment of an application to one remote host.

Submodules:
    config: Configuration schema and loader
    packager: Version marker, ignore patterns and archive
    digest: Archive checksum
    transport: SSH/SCP upload and remote invocation
    pipeline: Remote pipeline (verify, extract, hooks, link, activate, ping)
    steps: Step runner
    hooks: Hook capabilities (shell commands or a Python file)
    orchestrator: Local run (run_local)
    remote: Remote entry point (run_remote)

Usage:
    pushdeploy --host app.example.com     # Deploy the current project
"""

__version__ = "0.3.0"

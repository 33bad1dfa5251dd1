"""Pytest configuration and fixtures for pushdeploy tests."""

import hashlib
import io
import os
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from pushdeploy.config.schema import RemoteSettings
from pushdeploy.hooks import Hooks
from pushdeploy.pipeline import Release, RemotePipeline


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the developer's own configuration out of the tests."""
    for key in list(os.environ):
        if key.startswith("PUSHDEPLOY_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("NO_COLOR", "1")


def build_tarball(path: Path, files: dict[str, str]) -> str:
    """Write a gzip tarball of the given files and return its SHA-1."""
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if name == "run" else 0o644
            tar.addfile(info, io.BytesIO(data))
    return hashlib.sha1(path.read_bytes()).hexdigest()


@pytest.fixture
def archive(tmp_path) -> tuple[Path, str]:
    """A small release archive and its checksum."""
    path = tmp_path / "upload" / "myapp-v1.2.0.202610191200.tar.gz"
    path.parent.mkdir()
    digest = build_tarball(path, {
        "run": "#!/bin/sh\nexec python3 -m http.server\n",
        "app.py": "print('hello')\n",
        "static/index.html": "<h1>hi</h1>\n",
    })
    return path, digest


@pytest.fixture
def deploy_path(tmp_path) -> Path:
    path = tmp_path / "srv" / "myapp"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def release(archive, deploy_path) -> Release:
    path, digest = archive
    return Release(
        archive=path,
        deploy_path=deploy_path,
        name="myapp",
        release_id="202610191200",
        checksum=digest,
    )


@pytest.fixture
def settings(deploy_path) -> RemoteSettings:
    return RemoteSettings(
        command="./run",
        signal="SIGHUP",
        ping_path="/health",
        pid_path=str(deploy_path / "shared" / "server.pid"),
        app_port=8123,
        hostname="app.example.com",
        ping_delay=0,
        start_grace=0,
    )


@pytest.fixture
def make_pipeline(release, settings):
    """Factory for pipelines over the standard release and settings."""

    def factory(hooks: Hooks | None = None, **overrides) -> RemotePipeline:
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        return RemotePipeline(release, run_settings, hooks or Hooks())

    return factory


@pytest.fixture
def ping_response():
    """Patch the health-check request; set .status_code on the yielded response."""
    response = MagicMock(status_code=200)
    with patch("pushdeploy.pipeline.requests.get", return_value=response) as mock_get:
        response.mock_get = mock_get
        yield response


@pytest.fixture
def server_popen():
    """Patch server start-up with a process that keeps running."""
    process = MagicMock(pid=4242)
    process.poll.return_value = None
    with patch("pushdeploy.pipeline.subprocess.Popen", return_value=process) as mock_popen:
        yield mock_popen


@pytest.fixture
def previous_release(deploy_path) -> Path:
    """Simulate an earlier successful deploy: releases/<id> plus current."""
    previous = deploy_path / "releases" / "202610010900"
    previous.mkdir(parents=True)
    (previous / "app.py").write_text("print('old')\n")
    (deploy_path / "current").symlink_to(previous)
    return previous

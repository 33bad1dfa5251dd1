"""Archive checksums, shared by the packager and the remote pipeline."""

import hashlib
from pathlib import Path

CHUNK_SIZE = 64 * 1024


def checksum(path: Path) -> str:
    """SHA-1 of the file's bytes as lowercase hex."""
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()

"""Audio asset descriptor and ingest validation."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pipeline.errors import InputError

MIMETYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "webm": "audio/webm",
    "amr": "audio/amr",
    "3gp": "audio/3gpp",
}


@dataclass(frozen=True)
class AudioAsset:
    """An uploaded or generated audio file on disk."""

    path: Path
    mimetype: str
    size_bytes: int
    container: str

    @classmethod
    def from_path(cls, path: Path | str, mimetype: str | None = None) -> AudioAsset:
        path = Path(path)
        if not path.is_file():
            raise InputError(f"Audio file not found: {path.name}")
        container = path.suffix.lower().lstrip(".")
        return cls(
            path=path,
            mimetype=mimetype or MIMETYPES.get(container, "application/octet-stream"),
            size_bytes=path.stat().st_size,
            container=container,
        )


def validate_asset(
    asset: AudioAsset,
    *,
    max_bytes: int,
    allowed_extensions: Iterable[str],
) -> AudioAsset:
    """Reject assets that the pipeline must not process."""

    if not asset.path.is_file():
        raise InputError("Audio file not found.")
    if asset.size_bytes <= 0:
        raise InputError("Uploaded audio file is empty.")
    if asset.size_bytes > max_bytes:
        raise InputError(f"Audio file too large (max {max_bytes // (1024 * 1024)}MB).")
    if asset.container not in set(allowed_extensions):
        raise InputError(f"Unsupported audio format: .{asset.container or '?'}")
    return asset

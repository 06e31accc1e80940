"""HLS output directory: reset between sessions, playlist readiness."""

from __future__ import annotations

from typing import Any

import logging
import pathlib

from ffmpeg_command import PLAYLIST_NAME


log = logging.getLogger(__name__)

_OUTPUT_SUFFIXES = (".ts", ".m3u8")


class OutputSink:
    """Directory holding the rolling segments and playlist of the live session."""

    def __init__(self, directory: str | pathlib.Path) -> None:
        self.directory = pathlib.Path(directory)

    @property
    def playlist_path(self) -> pathlib.Path:
        return self.directory / PLAYLIST_NAME

    def reset(self) -> int:
        """Ensure the directory exists and remove all segment/playlist files.

        Returns the number of files removed.
        """
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            log.info("Created HLS directory %s", self.directory)
            return 0
        removed = 0
        for path in self.directory.iterdir():
            if path.suffix in _OUTPUT_SUFFIXES and path.is_file():
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            log.info("Removed %d old HLS files from %s", removed, self.directory)
        return removed

    def has_ready_output(self) -> bool:
        """True once the engine has written a playlist."""
        try:
            with self.playlist_path.open("rb") as f:
                return f.read(7) == b"#EXTM3U"
        except OSError:
            return False

    def describe(self) -> dict[str, Any]:
        """Directory listing for debugging."""
        if not self.directory.is_dir():
            return {"directory": str(self.directory), "exists": False, "files": []}
        files = sorted(p.name for p in self.directory.iterdir() if p.is_file())
        return {
            "directory": str(self.directory),
            "exists": True,
            "files": files,
            "has_playlist": any(f.endswith(".m3u8") for f in files),
            "has_segments": any(f.endswith(".ts") for f in files),
        }

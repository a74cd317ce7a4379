"""
Toolchain resolution: locate ffmpeg (and its ffprobe sibling).

The search covers PATH first, then the configured candidate directories.
When the server is launched from a service manager or a GUI session, PATH
often misses package-manager directories, hence the candidate list.
"""

import os
import shutil
import logging
from dataclasses import dataclass
from pathlib import Path

from videoscribe.core.constants import FFMPEG_BINARY, FFPROBE_BINARY, DEFAULT_TOOLCHAIN_DIRS
from videoscribe.core.error_codes import ToolUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolchainPath:
    directory: Path
    ffmpeg: Path
    ffprobe: Path | None = None

    @property
    def can_probe(self) -> bool:
        return self.ffprobe is not None


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class ToolchainResolver:
    """Pure lookup; never raises from resolve()."""

    def __init__(self, search_dirs: list[str] | None = None,
                 binary: str = FFMPEG_BINARY, probe_binary: str = FFPROBE_BINARY,
                 use_path: bool = True):
        self.search_dirs = list(DEFAULT_TOOLCHAIN_DIRS if search_dirs is None else search_dirs)
        self.binary = binary
        self.probe_binary = probe_binary
        self.use_path = use_path

    def candidate_dirs(self) -> list[Path]:
        dirs = []
        if self.use_path:
            found = shutil.which(self.binary)
            if found:
                dirs.append(Path(found).parent)
        for d in self.search_dirs:
            p = Path(os.path.expanduser(os.path.expandvars(d)))
            if p not in dirs:
                dirs.append(p)
        return dirs

    def resolve(self) -> ToolchainPath | None:
        for directory in self.candidate_dirs():
            ffmpeg = directory / self.binary
            if not _is_executable(ffmpeg):
                continue
            ffprobe = directory / self.probe_binary
            if not _is_executable(ffprobe):
                # ffprobe may live elsewhere on PATH even if ffmpeg does not
                which = shutil.which(self.probe_binary) if self.use_path else None
                ffprobe = Path(which) if which else None
            logger.debug("Toolchain resolved: %s (ffprobe=%s)", ffmpeg, ffprobe)
            return ToolchainPath(directory=directory, ffmpeg=ffmpeg, ffprobe=ffprobe)

        logger.info("%s not found on PATH or in %d candidate dirs", self.binary, len(self.search_dirs))
        return None

    def require(self) -> ToolchainPath:
        toolchain = self.resolve()
        if toolchain is None:
            raise ToolUnavailableError(self.binary, [str(d) for d in self.candidate_dirs()])
        return toolchain

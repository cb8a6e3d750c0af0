"""QuickTime -> MP4 normalization before encryption.

Browsers play H.264/AAC in MP4 reliably and QuickTime containers poorly, so
MOV uploads are re-encoded. Either the declared MIME type or the filename
extension is enough to trigger conversion; mislabeled uploads are common.
"""
import asyncio
import logging
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles.os

from media_vault.errors import TranscodeFailed

logger = logging.getLogger(__name__)

QUICKTIME_TYPES = frozenset({"video/quicktime"})
QUICKTIME_EXTENSIONS = frozenset({".mov", ".qt"})

TRANSCODED_MIME_TYPE = "video/mp4"
TRANSCODED_EXTENSION = ".mp4"

FFMPEG_OUTPUT_OPTIONS = [
    "-c:v", "libx264",
    "-preset", "veryfast",
    "-crf", "23",
    "-c:a", "aac",
    "-movflags", "+faststart",
]


def needs_transcode(mime_type: str | None, filename: str | None) -> bool:
    ext = Path(filename or "").suffix.lower()
    return (mime_type or "").lower() in QUICKTIME_TYPES or ext in QUICKTIME_EXTENSIONS


class Transcoder(ABC):
    """Converts one temp file into a new temp file. Never touches the catalog."""

    @abstractmethod
    async def transcode(self, input_path: Path) -> Path:
        """Return the path of the converted file or raise TranscodeFailed."""


class FfmpegTranscoder(Transcoder):
    """Runs the ffmpeg binary as a subprocess with a bounded wait."""

    def __init__(self, binary: str, output_dir: str | Path, timeout: float):
        self.binary = binary
        self.output_dir = Path(output_dir)
        self.timeout = timeout

    def _resolve_binary(self) -> str:
        found = shutil.which(self.binary)
        if not found:
            raise TranscodeFailed(
                f"MOV conversion requires ffmpeg; '{self.binary}' was not found on PATH"
            )
        return found

    async def transcode(self, input_path: Path) -> Path:
        binary = self._resolve_binary()
        output_path = self.output_dir / f"transcode-{uuid.uuid4().hex}{TRANSCODED_EXTENSION}"
        cmd = [binary, "-y", "-i", str(input_path), *FFMPEG_OUTPUT_OPTIONS, str(output_path)]

        ok = False
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise TranscodeFailed(f"Video conversion timed out after {self.timeout:g}s")
            except asyncio.CancelledError:
                proc.kill()
                await proc.wait()
                raise

            if proc.returncode != 0:
                detail = stderr.decode("utf-8", "replace").strip().splitlines()
                raise TranscodeFailed(
                    f"Video conversion failed: {detail[-1] if detail else f'exit code {proc.returncode}'}"
                )

            try:
                size = (await aiofiles.os.stat(output_path)).st_size
            except FileNotFoundError:
                size = 0
            if size == 0:
                raise TranscodeFailed("Video conversion produced no output")

            ok = True
            logger.info("Transcoded %s -> %s (%d bytes)", input_path.name, output_path.name, size)
            return output_path
        except OSError as e:
            raise TranscodeFailed(f"Could not run ffmpeg: {e}") from e
        finally:
            if not ok:
                try:
                    await aiofiles.os.remove(output_path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning("Failed to remove partial transcode output %s: %s", output_path, e)

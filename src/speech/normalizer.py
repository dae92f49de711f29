"""Conversion of arbitrary audio uploads to the canonical recognition waveform."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

import numpy as np
import soundfile as sf

from pipeline.errors import ConversionError
from speech.audio import AudioAsset
from storage.temp_files import TempResourceManager

LOGGER = logging.getLogger(__name__)

CANONICAL_SAMPLE_RATE = 16000
CANONICAL_SUBTYPE = "PCM_16"


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampler for mono float32 audio."""

    if src_rate == dst_rate or samples.size == 0:
        return samples.astype(np.float32)

    x_old = np.arange(samples.size, dtype=np.float64)
    x_new = np.linspace(0, samples.size - 1, int(samples.size * dst_rate / src_rate))
    return np.interp(x_new, x_old, samples).astype(np.float32)


def to_mono(frames: np.ndarray) -> np.ndarray:
    if frames.ndim > 1:
        return np.mean(frames, axis=1)  # mixdown
    return frames


class FormatNormalizer:
    """Produces mono, 16 kHz, 16-bit PCM WAV files.

    Anything libsndfile can decode (wav, flac, ogg, mp3) is converted in-process;
    other containers (m4a, aac, webm, amr, 3gp) are handed to ffmpeg.
    """

    def __init__(
        self,
        *,
        sample_rate: int = CANONICAL_SAMPLE_RATE,
        ffmpeg_binary: str = "ffmpeg",
        timeout: float = 60.0,
    ) -> None:
        self._sample_rate = sample_rate
        self._ffmpeg_binary = ffmpeg_binary
        self._timeout = timeout

    def is_canonical(self, asset: AudioAsset) -> bool:
        try:
            info = sf.info(str(asset.path))
        except RuntimeError:
            return False
        return (
            info.format == "WAV"
            and info.channels == 1
            and info.samplerate == self._sample_rate
            and info.subtype == CANONICAL_SUBTYPE
        )

    async def normalize(self, asset: AudioAsset, temp_files: TempResourceManager) -> AudioAsset:
        """Return the canonical form of ``asset``.

        An asset that is already canonical is returned unchanged and no file is
        created. The output path is registered with ``temp_files``; on failure it
        is released before ``ConversionError`` propagates.
        """

        if self.is_canonical(asset):
            LOGGER.debug("Audio %s already canonical, skipping conversion", asset.path.name)
            return asset

        output = temp_files.new_path("normalized", ".wav")
        try:
            if _soundfile_can_read(asset.path):
                await asyncio.to_thread(self._convert_with_soundfile, asset.path, output)
            else:
                await self._convert_with_ffmpeg(asset, output)
            if not output.exists() or output.stat().st_size == 0:
                raise ConversionError("Audio conversion produced no output.")
        except ConversionError:
            temp_files.release(output)
            raise
        except (RuntimeError, OSError, ValueError) as exc:
            temp_files.release(output)
            LOGGER.error("Audio conversion failed for %s: %s", asset.path.name, exc)
            raise ConversionError(f"Audio conversion failed: {exc}") from exc

        normalized = AudioAsset.from_path(output, "audio/wav")
        LOGGER.info(
            "Audio conversion completed: %s (%d bytes) -> %s (%d bytes)",
            asset.container,
            asset.size_bytes,
            output.name,
            normalized.size_bytes,
        )
        return normalized

    def _convert_with_soundfile(self, source: Path, destination: Path) -> None:
        frames, rate = sf.read(str(source), dtype="float32")
        mono = to_mono(np.asarray(frames, dtype=np.float32))
        resampled = resample_linear(mono, rate, self._sample_rate)
        sf.write(
            str(destination),
            resampled,
            self._sample_rate,
            subtype=CANONICAL_SUBTYPE,
            format="WAV",
        )

    async def _convert_with_ffmpeg(self, asset: AudioAsset, destination: Path) -> None:
        binary = shutil.which(self._ffmpeg_binary)
        if binary is None:
            raise ConversionError(
                f"Unsupported audio encoding: .{asset.container} (no decoder available)"
            )

        process = await asyncio.create_subprocess_exec(
            binary,
            "-nostdin",
            "-y",
            "-loglevel",
            "error",
            "-i",
            str(asset.path),
            "-ac",
            "1",
            "-ar",
            str(self._sample_rate),
            "-acodec",
            "pcm_s16le",
            "-f",
            "wav",
            str(destination),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            await _kill(process)
            raise ConversionError(
                f"Audio conversion timed out after {self._timeout:.0f}s."
            ) from exc
        except BaseException:
            # Cancelled request: never leave the decoder running.
            if process.returncode is None:
                process.kill()
            raise
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip().splitlines()
            raise ConversionError(
                f"Could not decode .{asset.container} audio: "
                f"{message[-1] if message else 'ffmpeg exited with ' + str(process.returncode)}"
            )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
    await process.wait()


def _soundfile_can_read(path: Path) -> bool:
    try:
        sf.info(str(path))
    except RuntimeError:
        return False
    return True

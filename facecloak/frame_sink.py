"""
Frame sink module for facecloak.

Sinks accept processed video frames and untouched audio chunks, gate the
producers with readiness checks, and finalize the output container once
both streams are finished. The ffmpeg sink encodes video with imageio's
ffmpeg writer into a temporary file, spools PCM audio next to it and muxes
both into the output on finalize.
"""

import logging
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import imageio
import imageio_ffmpeg
import numpy as np

from .config import Config
from .errors import SinkError
from .frame_source import AudioChunk, VideoInfo

logger = logging.getLogger(__name__)

VIDEO = "video"
AUDIO = "audio"


@dataclass
class FinalizeResult:
    """Outcome of finalizing the output container."""
    success: bool
    location: Optional[Path] = None
    reason: Optional[str] = None


class FrameSink:
    """Base class for backpressure-gated output sinks."""

    def __init__(self):
        self._ready_condition = threading.Condition()

    def ready_for_video(self) -> bool:
        return True

    def ready_for_audio(self) -> bool:
        return True

    def wait_ready(self, stream: str, should_stop: Optional[Callable[[], bool]] = None,
                   poll_interval: float = 0.05) -> bool:
        """
        Block until the sink accepts more data on a stream.

        The wait wakes up on notify_ready() and every `poll_interval`
        seconds to check `should_stop`.

        Returns:
            True when ready, False when stopped while waiting
        """
        is_ready = self.ready_for_video if stream == VIDEO else self.ready_for_audio
        with self._ready_condition:
            while not is_ready():
                if should_stop is not None and should_stop():
                    return False
                self._ready_condition.wait(timeout=poll_interval)
        return True

    def notify_ready(self):
        """Wake producers blocked in wait_ready()."""
        with self._ready_condition:
            self._ready_condition.notify_all()

    def write_video_frame(self, image: np.ndarray, timestamp: float):
        raise NotImplementedError

    def write_audio_samples(self, chunk: AudioChunk):
        raise NotImplementedError

    def finish_video(self):
        """Mark the video stream as complete."""
        pass

    def finish_audio(self):
        """Mark the audio stream as complete."""
        pass

    def finish_and_finalize(self) -> FinalizeResult:
        """Close and commit the output container. Called once per run."""
        raise NotImplementedError

    def abort(self):
        """Discard everything written so far."""
        pass


class FfmpegFrameSink(FrameSink):
    """Writes an MP4 with imageio's ffmpeg writer and muxes PCM audio on finalize."""

    def __init__(self, output_path: Path, info: VideoInfo, config: Config):
        super().__init__()
        self.output_path = Path(output_path)
        self.info = info
        self.config = config

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.temp_dir = Path(tempfile.mkdtemp(prefix="facecloak_", dir=str(self.output_path.parent)))
        self.temp_video_path = self.temp_dir / f"video{self.output_path.suffix or '.mp4'}"
        self.temp_audio_path = self.temp_dir / "audio.pcm"

        self.video_frames_written = 0
        self.audio_samples_written = 0
        self._last_timestamp = None
        self._finalized = False

        bitrate = config.video_bitrate or max(8_000_000, info.width * info.height * 10)
        self.video_writer = imageio.get_writer(
            str(self.temp_video_path),
            format='FFMPEG',
            mode='I',
            fps=info.fps,
            codec=config.video_codec,
            bitrate=bitrate,
            quality=None,
            pixelformat='yuv420p',
            macro_block_size=2,
            ffmpeg_log_level='error',
        )
        self.audio_file = open(self.temp_audio_path, 'wb')
        logger.debug(f"Writing temporary streams to {self.temp_dir} ({bitrate} bps video)")

    def write_video_frame(self, image: np.ndarray, timestamp: float):
        if self._last_timestamp is not None and timestamp <= self._last_timestamp:
            raise SinkError(
                "Video frames must be written in presentation order.",
                reason=f"timestamp {timestamp:.6f}s after {self._last_timestamp:.6f}s",
            )
        expected = (self.info.height, self.info.width, 3)
        if image.shape != expected:
            raise SinkError("Frame size does not match the output.", reason=f"{image.shape} != {expected}")

        try:
            self.video_writer.append_data(image)
        except Exception as e:
            raise SinkError("Failed to encode video frame.", reason=str(e)) from e

        self._last_timestamp = timestamp
        self.video_frames_written += 1

    def write_audio_samples(self, chunk: AudioChunk):
        try:
            self.audio_file.write(chunk.samples.tobytes())
        except OSError as e:
            raise SinkError("Failed to write audio samples.", reason=str(e)) from e
        self.audio_samples_written += len(chunk.samples)

    def finish_video(self):
        if self.video_writer is not None:
            try:
                self.video_writer.close()
            except Exception as e:
                raise SinkError("Failed to finish the video stream.", reason=str(e)) from e
            finally:
                self.video_writer = None

    def finish_audio(self):
        if self.audio_file is not None and not self.audio_file.closed:
            self.audio_file.close()

    def _mux_command(self) -> list:
        return [
            imageio_ffmpeg.get_ffmpeg_exe(),
            '-y',
            '-v', 'error',
            '-i', str(self.temp_video_path),
            '-f', 's16le',
            '-ar', str(self.info.audio_sample_rate),
            '-ac', str(self.info.audio_channels),
            '-i', str(self.temp_audio_path),
            '-map', '0:v:0',
            '-map', '1:a:0',
            '-c:v', 'copy',
            '-c:a', self.config.audio_codec,
            '-movflags', '+faststart',
            str(self.output_path),
        ]

    def finish_and_finalize(self) -> FinalizeResult:
        if self._finalized:
            return FinalizeResult(success=False, reason="Output was already finalized")
        self._finalized = True

        try:
            self.finish_video()
            self.finish_audio()

            if self.video_frames_written == 0:
                return FinalizeResult(success=False, reason="No video frames were written")

            if self.audio_samples_written == 0:
                shutil.move(str(self.temp_video_path), str(self.output_path))
            else:
                cmd = self._mux_command()
                logger.debug(f"Muxing output: {' '.join(cmd)}")
                result = subprocess.run(cmd, capture_output=True, text=True)
                if result.returncode != 0:
                    reason = result.stderr.strip() or f"ffmpeg exit code {result.returncode}"
                    self._remove_output()
                    return FinalizeResult(success=False, reason=reason)
        except SinkError as e:
            self._remove_output()
            return FinalizeResult(success=False, reason=e.reason or str(e))
        except OSError as e:
            self._remove_output()
            return FinalizeResult(success=False, reason=str(e))
        finally:
            shutil.rmtree(self.temp_dir, ignore_errors=True)

        logger.info(
            f"Output finalized: {self.output_path} "
            f"({self.video_frames_written} frames, {self.audio_samples_written} audio samples)"
        )
        return FinalizeResult(success=True, location=self.output_path)

    def _remove_output(self):
        if self.output_path.exists():
            self.output_path.unlink()

    def abort(self):
        """Close writers and remove temporary and partial output files."""
        if self.video_writer is not None:
            try:
                self.video_writer.close()
            except Exception as e:
                logger.debug(f"Ignoring video writer error during abort: {e}")
            self.video_writer = None
        if self.audio_file is not None and not self.audio_file.closed:
            self.audio_file.close()

        shutil.rmtree(self.temp_dir, ignore_errors=True)
        if not self._finalized:
            self._remove_output()
        logger.info(f"Discarded partial output for {self.output_path}")

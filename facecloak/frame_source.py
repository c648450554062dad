"""
Frame source module for facecloak.

This module handles:
1. Probing the input media (size, frame rate, duration, audio presence)
2. Pull-based decoding of video frames with presentation timestamps
3. Independent pull-based decoding of the audio track as PCM chunks

Video is decoded through imageio's ffmpeg reader; audio through the ffmpeg
binary bundled with imageio-ffmpeg, as signed 16-bit PCM at the native
sample rate and channel count of the track.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import imageio
import imageio_ffmpeg
import numpy as np

from .config import Config
from .errors import SourceError

logger = logging.getLogger(__name__)

CHANNEL_LAYOUTS = {
    "mono": 1,
    "stereo": 2,
    "2.1": 3,
    "3.0": 3,
    "quad": 4,
    "4.0": 4,
    "5.0": 5,
    "5.1": 6,
    "6.1": 7,
    "7.1": 8,
}


def parse_audio_stream(probe_output: str) -> Optional[Tuple[int, int]]:
    """
    Read the sample rate and channel count of the first audio stream from
    ffmpeg's stream listing.

    Args:
        probe_output: stderr of `ffmpeg -i <file>`

    Returns:
        (sample_rate, channels), or None if there is no audio stream or its
        layout is not recognised
    """
    audio_lines = [line for line in probe_output.splitlines()
                   if line.lstrip().startswith("Stream") and "Audio:" in line]
    if not audio_lines:
        return None

    match = re.search(r"(\d+) Hz, ([^,]+)", audio_lines[0])
    if not match:
        return None

    sample_rate = int(match.group(1))
    layout = match.group(2).strip()
    count = re.match(r"(\d+) channels", layout)
    if count:
        return sample_rate, int(count.group(1))

    # "5.1(side)" and friends share the channel count of the base layout
    channels = CHANNEL_LAYOUTS.get(layout.split("(", 1)[0])
    if channels is None:
        return None
    return sample_rate, channels


def probe_audio_stream(path: Path) -> Optional[Tuple[int, int]]:
    """Native (sample_rate, channels) of a media file's first audio stream."""
    cmd = [imageio_ffmpeg.get_ffmpeg_exe(), '-hide_banner', '-i', str(path)]
    # ffmpeg exits non-zero without an output file; the listing is still on stderr
    result = subprocess.run(cmd, capture_output=True, text=True, errors='replace')
    return parse_audio_stream(result.stderr)


@dataclass
class VideoInfo:
    """Properties of the input media needed to drive the pipeline."""
    width: int
    height: int
    fps: float
    duration: float
    has_audio: bool
    audio_sample_rate: int = 44100
    audio_channels: int = 2

    @property
    def total_frame_estimate(self) -> int:
        return max(1, int(self.duration * self.fps))


@dataclass
class VideoFrame:
    """One decoded video frame."""
    image: np.ndarray
    timestamp: float
    index: int


@dataclass
class AudioChunk:
    """Interleaved int16 PCM samples, shape (samples, channels)."""
    samples: np.ndarray
    timestamp: float
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


class FrameSource:
    """Base class for pull-based media sources."""

    @property
    def location(self) -> Optional[Path]:
        """Where the media comes from, if it lives on disk."""
        return None

    def open(self) -> VideoInfo:
        """
        Open the media and describe it.

        Raises:
            SourceError: If there is no video track or the media is unreadable
        """
        raise NotImplementedError

    def next_video_frame(self) -> Optional[VideoFrame]:
        """Next decoded frame, or None at end of stream."""
        raise NotImplementedError

    def next_audio_chunk(self) -> Optional[AudioChunk]:
        """Next audio chunk, or None at end of stream."""
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FfmpegFrameSource(FrameSource):
    """Decodes a media file with imageio (video) and ffmpeg (audio)."""

    def __init__(self, path: Path, config: Config):
        self.path = Path(path)
        self.config = config
        self.info: Optional[VideoInfo] = None
        self.video_reader = None
        self._video_iter = None
        self._video_index = 0
        self._audio_process = None
        self._audio_samples_read = 0
        self._audio_done = False

    @property
    def location(self) -> Optional[Path]:
        return self.path

    def open(self) -> VideoInfo:
        if not self.path.exists():
            raise SourceError(f"Input video not found: {self.path}")

        try:
            self.video_reader = imageio.get_reader(str(self.path), 'ffmpeg')
            meta = self.video_reader.get_meta_data()
        except Exception as e:
            raise SourceError(f"Failed to open video source {self.path}: {e}") from e

        size = meta.get('size')
        fps = meta.get('fps') or 0.0
        if not size or fps <= 0:
            self.close()
            raise SourceError(f"No video track found in {self.path}")

        has_audio = bool(meta.get('audio_codec'))
        sample_rate, channels = self.config.audio_sample_rate, self.config.audio_channels
        if has_audio:
            native = probe_audio_stream(self.path)
            if native is not None:
                sample_rate, channels = native
            else:
                logger.warning(
                    f"Could not read the audio layout of {self.path}, "
                    f"decoding at {sample_rate} Hz, {channels} channels"
                )

        self.info = VideoInfo(
            width=int(size[0]),
            height=int(size[1]),
            fps=float(fps),
            duration=float(meta.get('duration') or 0.0),
            has_audio=has_audio,
            audio_sample_rate=sample_rate,
            audio_channels=channels,
        )
        self._video_iter = self.video_reader.iter_data()

        logger.info(
            f"Source: {self.info.width}x{self.info.height} @ {self.info.fps:.2f} fps, "
            f"{self.info.duration:.2f}s, audio: {meta.get('audio_codec') or 'none'}"
            + (f" ({sample_rate} Hz, {channels} ch)" if has_audio else "")
        )
        return self.info

    def next_video_frame(self) -> Optional[VideoFrame]:
        try:
            image = next(self._video_iter)
        except StopIteration:
            return None
        except Exception as e:
            raise SourceError(f"Failed to decode video frame {self._video_index}: {e}") from e

        # imageio decodes to RGB already
        frame = VideoFrame(
            image=np.asarray(image),
            timestamp=self._video_index / self.info.fps,
            index=self._video_index,
        )
        self._video_index += 1
        return frame

    def _start_audio(self):
        cmd = [
            imageio_ffmpeg.get_ffmpeg_exe(),
            '-v', 'error',
            '-i', str(self.path),
            '-vn',
            '-f', 's16le',
            '-acodec', 'pcm_s16le',
            '-ar', str(self.info.audio_sample_rate),
            '-ac', str(self.info.audio_channels),
            '-',
        ]
        logger.debug(f"Starting audio decoder: {' '.join(cmd)}")
        self._audio_process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    def next_audio_chunk(self) -> Optional[AudioChunk]:
        if self.info is None or not self.info.has_audio or self._audio_done:
            return None
        if self._audio_process is None:
            self._start_audio()

        channels = self.info.audio_channels
        frame_bytes = 2 * channels
        data = self._audio_process.stdout.read(self.config.audio_chunk_samples * frame_bytes)

        if not data:
            self._audio_done = True
            stderr = self._audio_process.stderr.read().decode('utf-8', errors='replace').strip()
            returncode = self._audio_process.wait()
            if returncode != 0:
                raise SourceError(f"Audio decoding failed (ffmpeg exit code {returncode}): {stderr}")
            return None

        usable = len(data) - len(data) % frame_bytes
        samples = np.frombuffer(data[:usable], dtype=np.int16).reshape(-1, channels)
        chunk = AudioChunk(
            samples=samples,
            timestamp=self._audio_samples_read / float(self.info.audio_sample_rate),
            sample_rate=self.info.audio_sample_rate,
        )
        self._audio_samples_read += len(samples)
        return chunk

    def close(self):
        """Clean up readers and the audio decoder."""
        if self.video_reader is not None:
            self.video_reader.close()
            self.video_reader = None
        if self._audio_process is not None:
            if self._audio_process.poll() is None:
                self._audio_process.kill()
            self._audio_process.wait()
            for stream in (self._audio_process.stdout, self._audio_process.stderr):
                if stream is not None:
                    stream.close()
            self._audio_process = None

"""In-memory sources, sinks, detectors and renderers for pipeline tests.

Nothing here touches ffmpeg or a real face model, so pipeline tests run
fast and deterministically.
"""

import threading
from typing import Callable, List, Optional, Sequence

import numpy as np

from facecloak.errors import DetectorError
from facecloak.frame_sink import FinalizeResult, FrameSink
from facecloak.frame_source import AudioChunk, FrameSource, VideoFrame, VideoInfo
from facecloak.geometry import Region
from facecloak.renderer import EffectAssignment, EffectRenderer


def create_mock_frame(width: int = 64, height: int = 48, seed: int = 0) -> np.ndarray:
    """Random RGB uint8 frame."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def create_audio_chunks(count: int, samples: int = 256, channels: int = 2,
                        sample_rate: int = 44100) -> List[AudioChunk]:
    chunks = []
    for i in range(count):
        data = np.full((samples, channels), i, dtype=np.int16)
        chunks.append(AudioChunk(samples=data, timestamp=i * samples / sample_rate, sample_rate=sample_rate))
    return chunks


class MemoryFrameSource(FrameSource):
    """Serves pre-built frames and audio chunks."""

    def __init__(self, frame_count: int = 10, fps: float = 2.0, width: int = 64, height: int = 48,
                 audio_chunks: Optional[Sequence[AudioChunk]] = None, open_error: Exception = None):
        self.frames = [create_mock_frame(width, height, seed=i) for i in range(frame_count)]
        self.fps = fps
        self.width = width
        self.height = height
        self.audio_chunks = list(audio_chunks) if audio_chunks is not None else []
        self.open_error = open_error
        self._video_index = 0
        self._audio_index = 0
        self.closed = False

    def open(self) -> VideoInfo:
        if self.open_error is not None:
            raise self.open_error
        return VideoInfo(
            width=self.width,
            height=self.height,
            fps=self.fps,
            duration=len(self.frames) / self.fps,
            has_audio=bool(self.audio_chunks),
        )

    def next_video_frame(self) -> Optional[VideoFrame]:
        if self._video_index >= len(self.frames):
            return None
        index = self._video_index
        self._video_index += 1
        return VideoFrame(image=self.frames[index], timestamp=index / self.fps, index=index)

    def next_audio_chunk(self) -> Optional[AudioChunk]:
        if self._audio_index >= len(self.audio_chunks):
            return None
        chunk = self.audio_chunks[self._audio_index]
        self._audio_index += 1
        return chunk

    def close(self):
        self.closed = True


class MemoryFrameSink(FrameSink):
    """Records everything written to it.

    Set `video_blocked` to hold the video producer in wait_ready() until
    unblock_video() is called.
    """

    def __init__(self, finalize_result: Optional[FinalizeResult] = None, video_blocked: bool = False):
        super().__init__()
        self.finalize_result = finalize_result
        self.video_blocked = video_blocked
        self.video_frames: List[np.ndarray] = []
        self.video_timestamps: List[float] = []
        self.audio_chunks: List[AudioChunk] = []
        self.video_finished = False
        self.audio_finished = False
        self.finalize_calls = 0
        self.finalize_thread: Optional[str] = None
        self.aborted = False
        self._lock = threading.Lock()

    def ready_for_video(self) -> bool:
        return not self.video_blocked

    def unblock_video(self):
        self.video_blocked = False
        self.notify_ready()

    def write_video_frame(self, image: np.ndarray, timestamp: float):
        with self._lock:
            self.video_frames.append(image)
            self.video_timestamps.append(timestamp)

    def write_audio_samples(self, chunk: AudioChunk):
        with self._lock:
            self.audio_chunks.append(chunk)

    def finish_video(self):
        self.video_finished = True

    def finish_audio(self):
        self.audio_finished = True

    def finish_and_finalize(self) -> FinalizeResult:
        with self._lock:
            self.finalize_calls += 1
            self.finalize_thread = threading.current_thread().name
        if self.finalize_result is not None:
            return self.finalize_result
        return FinalizeResult(success=True)

    def abort(self):
        self.aborted = True


class ScriptedDetector:
    """Returns the same regions on every call, or per-call regions from a script."""

    def __init__(self, regions: Sequence[Region] = (), script: Optional[Sequence[Sequence[Region]]] = None):
        self.regions = list(regions)
        self.script = list(script) if script is not None else None
        self.calls = 0

    def detect(self, frame: np.ndarray) -> List[Region]:
        call = self.calls
        self.calls += 1
        if self.script is not None:
            return list(self.script[call]) if call < len(self.script) else []
        return list(self.regions)


class FailingDetector(ScriptedDetector):
    """Raises DetectorError on the given call numbers."""

    def __init__(self, regions: Sequence[Region] = (), fail_on: Sequence[int] = ()):
        super().__init__(regions)
        self.fail_on = set(fail_on)

    def detect(self, frame: np.ndarray) -> List[Region]:
        if self.calls in self.fail_on:
            self.calls += 1
            raise DetectorError("model crashed")
        return super().detect(frame)


class SpyRenderer(EffectRenderer):
    """Records the assignments of every frame and optionally runs a hook first."""

    def __init__(self, hook: Optional[Callable[[int], None]] = None):
        self.hook = hook
        self.calls: List[List[EffectAssignment]] = []

    def apply(self, frame: np.ndarray, assignments: Sequence[EffectAssignment]) -> np.ndarray:
        call = len(self.calls)
        self.calls.append(list(assignments))
        if self.hook is not None:
            self.hook(call)
        return frame.copy()

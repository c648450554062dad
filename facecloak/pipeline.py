"""
Pipeline coordinator for facecloak.

This module drives one video through the concealment pipeline:
- the video loop reads frames, runs detection on the detection cadence,
  conceals every tracked face and writes the frame at its original timestamp
- the audio loop copies audio chunks to the sink untouched
- both loops run concurrently and are gated by sink readiness
- the output is finalized exactly once, by whichever loop finishes last,
  and never after a failure
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .config import Config
from .detector import FaceDetector, OpenCVFaceDetector
from .errors import CancellationError, SinkError
from .face_processor import FaceProcessor
from .frame_sink import AUDIO, VIDEO, FfmpegFrameSink, FrameSink
from .frame_source import FfmpegFrameSource, FrameSource, VideoInfo
from .progress import ProgressCallback, ProgressReporter
from .renderer import EffectRenderer, OpenCVEffectRenderer

logger = logging.getLogger(__name__)

SinkFactory = Callable[[VideoInfo], FrameSink]


def check_cancelled(cancel_event: threading.Event):
    """Cancellation point: raise if the caller asked to stop."""
    if cancel_event.is_set():
        raise CancellationError("Processing was cancelled.")


class PipelineStatus(Enum):
    RUNNING = "running"
    VIDEO_DONE = "video_done"
    AUDIO_DONE = "audio_done"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ProcessedVideo:
    """Result of a successful run."""
    original_path: Optional[Path]
    processed_path: Optional[Path]
    max_faces_concealed: int


class PipelineState:
    """
    Shared state of one run, touched by both stream loops.

    All mutation goes through one lock. The finalize decision is a
    compare-and-set on `finalized`: the loop that marks its stream done and
    finds the other stream already done flips it and is the only one told
    to finalize.
    """

    def __init__(self, total_frame_estimate: int, has_audio: bool = True):
        self._lock = threading.Lock()
        self.processed_frames = 0
        self.total_frame_estimate = max(1, total_frame_estimate)
        self.video_done = False
        self.audio_done = not has_audio
        self.finalized = False
        self.max_faces = 0
        self.status = PipelineStatus.AUDIO_DONE if self.audio_done else PipelineStatus.RUNNING
        self.error: Optional[BaseException] = None
        self.result: Optional[ProcessedVideo] = None

    def _mark_done(self, stream: str) -> bool:
        with self._lock:
            if stream == VIDEO:
                self.video_done = True
            else:
                self.audio_done = True

            if self.error is not None:
                return False
            if not (self.video_done and self.audio_done):
                self.status = PipelineStatus.VIDEO_DONE if self.video_done else PipelineStatus.AUDIO_DONE
                return False
            if self.finalized:
                return False
            self.finalized = True
            self.status = PipelineStatus.FINALIZING
            return True

    def mark_video_done(self) -> bool:
        """Record video exhaustion. True means the caller must finalize."""
        return self._mark_done(VIDEO)

    def mark_audio_done(self) -> bool:
        """Record audio exhaustion. True means the caller must finalize."""
        return self._mark_done(AUDIO)

    def record_frame(self, live_faces: int) -> int:
        with self._lock:
            self.processed_frames += 1
            self.max_faces = max(self.max_faces, live_faces)
            return self.processed_frames

    def fail(self, error: BaseException) -> bool:
        """Record a fatal error. Only the first one is kept."""
        with self._lock:
            if self.error is not None or self.status == PipelineStatus.COMPLETED:
                return False
            self.error = error
            if isinstance(error, CancellationError):
                self.status = PipelineStatus.CANCELLED
            else:
                self.status = PipelineStatus.FAILED
            return True

    def complete(self, result: ProcessedVideo):
        with self._lock:
            self.result = result
            self.status = PipelineStatus.COMPLETED


class PipelineCoordinator:
    """Runs the video and audio loops of one concealment job."""

    def __init__(self, config: Config, detector: Optional[FaceDetector] = None,
                 renderer: Optional[EffectRenderer] = None):
        self.config = config
        self._detector = detector
        self.renderer = renderer or OpenCVEffectRenderer.from_config(config)
        self.last_state: Optional[PipelineState] = None

    @property
    def detector(self) -> FaceDetector:
        if self._detector is None:
            self._detector = OpenCVFaceDetector.from_config(self.config)
        return self._detector

    def process_file(self, input_path: Path, output_path: Optional[Path] = None,
                     progress_callback: Optional[ProgressCallback] = None,
                     cancel_event: Optional[threading.Event] = None) -> ProcessedVideo:
        """Conceal faces in a media file and write the result next to the other outputs."""
        input_path = Path(input_path)
        if output_path is None:
            output_path = self.config.output_dir / f"{input_path.stem}_cloaked{self.config.output_suffix}"
        output_path = Path(output_path)

        source = FfmpegFrameSource(input_path, self.config)
        return self.process_video(
            source,
            lambda info: FfmpegFrameSink(output_path, info, self.config),
            progress_callback=progress_callback,
            cancel_event=cancel_event,
        )

    def process_video(self, source: FrameSource, sink_factory: SinkFactory,
                      progress_callback: Optional[ProgressCallback] = None,
                      cancel_event: Optional[threading.Event] = None) -> ProcessedVideo:
        """
        Run the full pipeline for one source.

        The source is opened and closed here. The sink is created once the
        source is described and is either finalized (success) or aborted.

        Args:
            source: Media to read
            sink_factory: Builds the output sink from the source's VideoInfo
            progress_callback: Receives non-decreasing fractions, 1.0 last on success
            cancel_event: Set it to stop the run with CancellationError

        Returns:
            ProcessedVideo describing the finalized output

        Raises:
            SourceError, RenderError, SinkError, CancellationError: the first
            fatal error of the run
        """
        cancel_event = cancel_event or threading.Event()
        try:
            info = source.open()
            check_cancelled(cancel_event)

            interval = self.config.resolve_detection_interval(info.fps)
            processor = FaceProcessor(self.config, self.detector, self.renderer, interval)
            state = PipelineState(info.total_frame_estimate, has_audio=info.has_audio)
            self.last_state = state
            progress = ProgressReporter(progress_callback, self.config.progress_interval_frames)
            logger.info(
                f"Processing ~{state.total_frame_estimate} frames, detection every {interval} frames, "
                f"effect: {processor.effect.value}"
            )

            try:
                sink = sink_factory(info)
            except SinkError:
                raise
            except Exception as e:
                raise SinkError("Failed to open the output.", reason=str(e)) from e
            abort_event = threading.Event()
            run = _Run(source, sink, processor, state, progress, cancel_event, abort_event)
            progress.report(0.0)

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="facecloak") as executor:
                futures = [executor.submit(run.guard, run.video_loop)]
                if info.has_audio:
                    futures.append(executor.submit(run.guard, run.audio_loop))
                try:
                    wait(futures)
                except KeyboardInterrupt:
                    # Both loops stop at their next step; the sink is aborted below
                    logger.info("Interrupted, cancelling processing")
                    cancel_event.set()

            if state.error is not None:
                sink.abort()
                raise state.error

            logger.info(
                f"Completed: {state.processed_frames} frames, "
                f"max {state.max_faces} faces concealed, "
                f"{processor.detector_failures} detector failures"
            )
            return state.result
        finally:
            source.close()


class _Run:
    """The two stream loops of a single process_video() call."""

    def __init__(self, source: FrameSource, sink: FrameSink,
                 processor: FaceProcessor, state: PipelineState, progress: ProgressReporter,
                 cancel_event: threading.Event, abort_event: threading.Event):
        self.source = source
        self.sink = sink
        self.processor = processor
        self.state = state
        self.progress = progress
        self.cancel_event = cancel_event
        self.abort_event = abort_event

    def _should_stop(self) -> bool:
        return self.abort_event.is_set() or self.cancel_event.is_set()

    def guard(self, loop: Callable[[], None]):
        """Run a loop, turning any exception into the run's failure."""
        try:
            loop()
        except Exception as e:
            if self.state.fail(e):
                if isinstance(e, CancellationError):
                    logger.info("Processing cancelled")
                else:
                    logger.error(f"Pipeline failed: {e}")
            self.abort_event.set()

    def _next_step(self, stream: str) -> bool:
        """Cancellation point and readiness gate. False means stop quietly."""
        check_cancelled(self.cancel_event)
        if self.abort_event.is_set():
            return False
        if not self.sink.wait_ready(stream, self._should_stop):
            check_cancelled(self.cancel_event)
            return False
        return True

    def video_loop(self):
        while self._next_step(VIDEO):
            frame = self.source.next_video_frame()
            if frame is None:
                self.sink.finish_video()
                logger.info(f"Video done: {self.state.processed_frames} frames")
                if self.state.mark_video_done():
                    self.finalize()
                return

            processed = self.processor.process_frame(frame.image, frame.index)
            self.sink.write_video_frame(processed, frame.timestamp)

            count = self.state.record_frame(self.processor.live_faces)
            if count % 50 == 0:
                logger.info(f"Processed {count}/{self.state.total_frame_estimate} frames")
            self.progress.video_progress(count, self.state.total_frame_estimate)

    def audio_loop(self):
        chunks = 0
        while self._next_step(AUDIO):
            chunk = self.source.next_audio_chunk()
            if chunk is None:
                self.sink.finish_audio()
                logger.info(f"Audio done: {chunks} chunks")
                if self.state.mark_audio_done():
                    self.finalize()
                return

            self.sink.write_audio_samples(chunk)
            chunks += 1

    def finalize(self):
        self.progress.report(0.95)
        outcome = self.sink.finish_and_finalize()
        if not outcome.success:
            raise SinkError("Finalizing the output container failed.", reason=outcome.reason)

        self.state.complete(ProcessedVideo(
            original_path=self.source.location,
            processed_path=outcome.location,
            max_faces_concealed=self.state.max_faces,
        ))
        self.progress.complete()

"""
Face processing module for facecloak.

This module runs the per-frame video step: periodic face detection, track
update and concealment of every tracked face.
"""

import logging
from typing import List, Optional

import numpy as np

from .config import Config
from .detector import FaceDetector
from .geometry import Region
from .renderer import EffectRenderer, EffectKind, assign_effect
from .tracker import FaceTracker

logger = logging.getLogger(__name__)


class FaceProcessor:
    """Handles face detection, tracking and concealment for one video."""

    def __init__(self, config: Config, detector: FaceDetector, renderer: EffectRenderer,
                 detection_interval: int, effect: Optional[EffectKind] = None):
        self.config = config
        self.detector = detector
        self.renderer = renderer
        self.detection_interval = detection_interval
        self.effect = effect or config.effect_kind
        self.tracker = FaceTracker.from_config(config)
        self.detector_failures = 0

    def is_detection_frame(self, frame_index: int) -> bool:
        return frame_index % self.detection_interval == 0

    def update_tracks(self, frame: np.ndarray, frame_index: int) -> List[Region]:
        """
        Run the detector on detection frames and fold the result into the tracks.

        A failing detector leaves the tracks untouched for this frame.

        Returns:
            Regions to conceal on this frame
        """
        if not self.is_detection_frame(frame_index):
            return self.tracker.regions

        try:
            detections = self.detector.detect(frame)
        except Exception as e:
            self.detector_failures += 1
            logger.warning(f"Face detection failed on frame {frame_index}, keeping last tracks: {e}")
            return self.tracker.regions

        self.tracker.update(detections, frame_index)
        return self.tracker.regions

    def process_frame(self, frame: np.ndarray, frame_index: int) -> np.ndarray:
        """
        Conceal every tracked face in a frame.

        Args:
            frame: Decoded RGB frame
            frame_index: Zero-based index of the frame in the stream

        Returns:
            New frame with each tracked region concealed

        Raises:
            RenderError: If the renderer fails
        """
        regions = self.update_tracks(frame, frame_index)
        return self.renderer.apply(frame, assign_effect(regions, self.effect))

    @property
    def live_faces(self) -> int:
        return len(self.tracker)

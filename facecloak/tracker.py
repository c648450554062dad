"""
Face tracking module for facecloak.

Turns sparse, independent per-frame detections into a temporally coherent
set of face tracks. Detections are associated with existing tracks by
greedy IoU matching, matched positions are exponentially smoothed, fresh
detections start new tracks and tracks that go unmatched for too long
expire. The surviving rectangles are what gets concealed on every frame,
including the frames where the detector did not run.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence

from .geometry import Region, iou, smooth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackedFace:
    """A face identity with its smoothed position."""
    rect: Region
    last_seen_frame: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


def update_tracks(existing: Sequence[TrackedFace], detections: Sequence[Region], frame_index: int,
                  iou_threshold: float = 0.3, smoothing: float = 0.7,
                  expiry_frames: int = 30) -> List[TrackedFace]:
    """
    Fold one detection batch into the current track set.

    Tracks are matched in their existing order, each taking the unmatched
    detection with the highest IoU above the threshold (the first such
    detection on ties). This is a greedy assignment, not a maximum-weight
    matching.

    Args:
        existing: Current tracks, not modified
        detections: Raw detector output for this frame
        frame_index: Index of the frame the detections belong to
        iou_threshold: Minimum IoU (exclusive) for a detection to match a track
        smoothing: Weight of the detected rect in the smoothed position
        expiry_frames: Tracks unseen for this many frames are dropped

    Returns:
        The surviving tracks, existing ones first, then new ones in detection order
    """
    matched = set()
    updated = []

    for track in existing:
        best_index = None
        best_iou = iou_threshold
        for j, detected in enumerate(detections):
            if j in matched:
                continue
            overlap = iou(track.rect, detected)
            if overlap > best_iou:
                best_index = j
                best_iou = overlap

        if best_index is None:
            updated.append(track)
            continue

        matched.add(best_index)
        updated.append(replace(
            track,
            rect=smooth(track.rect, detections[best_index], smoothing),
            last_seen_frame=frame_index,
        ))

    for j, detected in enumerate(detections):
        if j not in matched:
            updated.append(TrackedFace(rect=detected, last_seen_frame=frame_index))

    return [t for t in updated if frame_index - t.last_seen_frame < expiry_frames]


class FaceTracker:
    """Owns the live track set for one video."""

    def __init__(self, iou_threshold: float = 0.3, smoothing: float = 0.7, expiry_frames: int = 30):
        self.iou_threshold = iou_threshold
        self.smoothing = smoothing
        self.expiry_frames = expiry_frames
        self._tracks: List[TrackedFace] = []
        self.total_identities = 0

    @classmethod
    def from_config(cls, config) -> "FaceTracker":
        return cls(
            iou_threshold=config.iou_threshold,
            smoothing=config.smoothing_factor,
            expiry_frames=config.track_expiry_frames,
        )

    @property
    def tracks(self) -> List[TrackedFace]:
        return list(self._tracks)

    @property
    def regions(self) -> List[Region]:
        """Rectangles to conceal on the current frame."""
        return [t.rect for t in self._tracks]

    def __len__(self) -> int:
        return len(self._tracks)

    def update(self, detections: Sequence[Region], frame_index: int) -> List[TrackedFace]:
        """Apply a detection batch and return the new track set."""
        previous_ids = {t.id for t in self._tracks}
        self._tracks = update_tracks(
            self._tracks,
            detections,
            frame_index,
            iou_threshold=self.iou_threshold,
            smoothing=self.smoothing,
            expiry_frames=self.expiry_frames,
        )

        current_ids = {t.id for t in self._tracks}
        created = len(current_ids - previous_ids)
        expired = len(previous_ids - current_ids)
        self.total_identities += created
        if created or expired:
            logger.debug(
                f"Frame {frame_index}: {len(detections)} detections, "
                f"{created} new tracks, {expired} expired, {len(self._tracks)} live"
            )
        return self.tracks

    def find(self, track_id: str) -> Optional[TrackedFace]:
        for track in self._tracks:
            if track.id == track_id:
                return track
        return None

    def reset(self):
        """Forget all tracks."""
        self._tracks = []
        self.total_identities = 0

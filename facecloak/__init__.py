"""
Package initialization for facecloak.
"""

# Import main classes for easy access
from .config import Config, load_config
from .errors import (
    FaceCloakError,
    SourceError,
    DetectorError,
    RenderError,
    SinkError,
    CancellationError,
)
from .geometry import Region, iou
from .tracker import TrackedFace, FaceTracker, update_tracks
from .detector import FaceDetector, OpenCVFaceDetector
from .renderer import EffectKind, EffectAssignment, EffectRenderer, OpenCVEffectRenderer
from .frame_source import FrameSource, FfmpegFrameSource, VideoFrame, AudioChunk, VideoInfo
from .frame_sink import FrameSink, FfmpegFrameSink, FinalizeResult
from .pipeline import PipelineCoordinator, PipelineState, PipelineStatus, ProcessedVideo

__version__ = "1.0.0"

__all__ = [
    'Config',
    'load_config',
    'FaceCloakError',
    'SourceError',
    'DetectorError',
    'RenderError',
    'SinkError',
    'CancellationError',
    'Region',
    'iou',
    'TrackedFace',
    'FaceTracker',
    'update_tracks',
    'FaceDetector',
    'OpenCVFaceDetector',
    'EffectKind',
    'EffectAssignment',
    'EffectRenderer',
    'OpenCVEffectRenderer',
    'FrameSource',
    'FfmpegFrameSource',
    'VideoFrame',
    'AudioChunk',
    'VideoInfo',
    'FrameSink',
    'FfmpegFrameSink',
    'FinalizeResult',
    'PipelineCoordinator',
    'PipelineState',
    'PipelineStatus',
    'ProcessedVideo',
]

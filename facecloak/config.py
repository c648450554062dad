"""
Configuration management for facecloak.

This module handles loading and validation of the face concealment
parameters: tracking constants, effect settings, detector options and
output encoding.
"""

from pathlib import Path
from typing import Dict, Any, Optional
import yaml
from dataclasses import dataclass
from PIL import ImageColor

from .renderer import EffectKind


@dataclass
class Config:
    """Configuration class for facecloak."""

    # Input / output
    input_video: Optional[Path] = None
    output_dir: Path = Path("output")
    debug_dir: Path = Path("debug")
    output_suffix: str = ".mp4"

    # Tracking
    detection_interval: Optional[int] = None  # None -> max(1, fps / 6)
    iou_threshold: float = 0.3
    smoothing_factor: float = 0.7  # weight of the new detection
    track_expiry_frames: int = 30

    # Concealment effect
    effect: str = "blur"
    emoji: str = "🙂"
    emoji_font: Optional[Path] = None
    emoji_backdrop: str = "#FFCC4D"  # opaque disk drawn under the emoji
    blur_radius: int = 30
    pixelate_divisions: int = 8
    margin_x: float = 0.4
    margin_y: float = 0.5
    mask_inner_ratio: float = 0.35
    mask_outer_ratio: float = 0.65
    pixelate_mask_inner_ratio: float = 0.4
    pixelate_mask_outer_ratio: float = 0.6

    # Face detector
    detector_model: str = "auto"  # "auto", "dnn" or "haar"
    models_dir: Path = Path("models")
    detector_confidence: float = 0.5
    haar_scale_factor: float = 1.1
    haar_min_neighbors: int = 5
    min_face_size: int = 30

    # Encoding
    video_codec: str = "libx264"
    video_bitrate: Optional[int] = None  # None -> max(8 Mbps, pixels * 10)
    audio_codec: str = "aac"
    # Used only when the source's audio layout cannot be read
    audio_sample_rate: int = 44100
    audio_channels: int = 2
    audio_chunk_samples: int = 1024

    # Progress reporting
    progress_interval_frames: int = 10

    def __post_init__(self):
        """Post-initialization validation and path conversion."""
        if isinstance(self.input_video, str):
            self.input_video = Path(self.input_video)
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.debug_dir, str):
            self.debug_dir = Path(self.debug_dir)
        if isinstance(self.models_dir, str):
            self.models_dir = Path(self.models_dir)
        if isinstance(self.emoji_font, str):
            self.emoji_font = Path(self.emoji_font)

        self.validate()

    def validate(self):
        """Validate configuration parameters."""
        try:
            EffectKind(self.effect)
        except ValueError:
            choices = ", ".join(kind.value for kind in EffectKind)
            raise ValueError(f"Unknown effect '{self.effect}'. Supported effects: {choices}")

        if self.detection_interval is not None and self.detection_interval < 1:
            raise ValueError("detection_interval must be at least 1")

        if not 0.0 <= self.iou_threshold < 1.0:
            raise ValueError(f"iou_threshold must be in [0, 1), got {self.iou_threshold}")

        if not 0.0 <= self.smoothing_factor <= 1.0:
            raise ValueError(f"smoothing_factor must be in [0, 1], got {self.smoothing_factor}")

        if self.track_expiry_frames < 1:
            raise ValueError("track_expiry_frames must be at least 1")

        if self.blur_radius <= 0 or self.pixelate_divisions <= 0:
            raise ValueError("blur_radius and pixelate_divisions must be positive")

        if self.margin_x < 0 or self.margin_y < 0:
            raise ValueError("Region margins cannot be negative")

        if not 0.0 < self.mask_inner_ratio < self.mask_outer_ratio:
            raise ValueError(
                f"Mask ratios must satisfy 0 < inner < outer, "
                f"got inner={self.mask_inner_ratio} outer={self.mask_outer_ratio}"
            )

        if not 0.0 < self.pixelate_mask_inner_ratio < self.pixelate_mask_outer_ratio:
            raise ValueError(
                f"Pixelate mask ratios must satisfy 0 < inner < outer, "
                f"got inner={self.pixelate_mask_inner_ratio} outer={self.pixelate_mask_outer_ratio}"
            )

        try:
            ImageColor.getrgb(self.emoji_backdrop)
        except ValueError:
            raise ValueError(f"Invalid emoji_backdrop colour: {self.emoji_backdrop}")

        if self.detector_model not in ("auto", "dnn", "haar"):
            raise ValueError(f"Unsupported detector model: {self.detector_model}")

        if self.audio_sample_rate <= 0 or self.audio_channels <= 0 or self.audio_chunk_samples <= 0:
            raise ValueError("Audio sample rate, channels and chunk size must be positive")

        if self.progress_interval_frames < 1:
            raise ValueError("progress_interval_frames must be at least 1")

    @property
    def effect_kind(self) -> EffectKind:
        """The configured concealment effect as an EffectKind."""
        return EffectKind(self.effect)

    def resolve_detection_interval(self, fps: float) -> int:
        """Frames between two detector runs for a stream at the given frame rate."""
        if self.detection_interval is not None:
            return self.detection_interval
        return max(1, int(fps / 6))

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {
            "input_video": str(self.input_video) if self.input_video else None,
            "output_dir": str(self.output_dir),
            "debug_dir": str(self.debug_dir),
            "output_suffix": self.output_suffix,
            "detection_interval": self.detection_interval,
            "iou_threshold": self.iou_threshold,
            "smoothing_factor": self.smoothing_factor,
            "track_expiry_frames": self.track_expiry_frames,
            "effect": self.effect,
            "emoji": self.emoji,
            "emoji_font": str(self.emoji_font) if self.emoji_font else None,
            "emoji_backdrop": self.emoji_backdrop,
            "blur_radius": self.blur_radius,
            "pixelate_divisions": self.pixelate_divisions,
            "margin_x": self.margin_x,
            "margin_y": self.margin_y,
            "mask_inner_ratio": self.mask_inner_ratio,
            "mask_outer_ratio": self.mask_outer_ratio,
            "pixelate_mask_inner_ratio": self.pixelate_mask_inner_ratio,
            "pixelate_mask_outer_ratio": self.pixelate_mask_outer_ratio,
            "detector_model": self.detector_model,
            "models_dir": str(self.models_dir),
            "detector_confidence": self.detector_confidence,
            "haar_scale_factor": self.haar_scale_factor,
            "haar_min_neighbors": self.haar_min_neighbors,
            "min_face_size": self.min_face_size,
            "video_codec": self.video_codec,
            "video_bitrate": self.video_bitrate,
            "audio_codec": self.audio_codec,
            "audio_sample_rate": self.audio_sample_rate,
            "audio_channels": self.audio_channels,
            "audio_chunk_samples": self.audio_chunk_samples,
            "progress_interval_frames": self.progress_interval_frames,
        }


def load_config(config_path: str) -> Config:
    """Load configuration from a YAML file, creating a default one if missing."""
    config_file = Path(config_path)

    if not config_file.exists():
        default_config = Config()
        save_config(default_config, config_path)
        print(f"Created default configuration file: {config_path}")
        return default_config

    with open(config_file, 'r', encoding='utf-8') as f:
        config_dict = yaml.safe_load(f) or {}

    unknown = sorted(set(config_dict) - set(Config.__dataclass_fields__))
    if unknown:
        raise ValueError(f"Unknown configuration keys in {config_path}: {unknown}")

    return Config(**config_dict)


def save_config(config: Config, config_path: str):
    """Save configuration to YAML file."""
    config_dict = config.to_dict()

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, default_flow_style=False, indent=2, allow_unicode=True)


def create_example_config() -> str:
    """Create an example configuration file."""
    example_config = """# facecloak configuration
# Edit the input path and run: facecloak --config config.yaml

# Input / output
input_video: "path/to/video.mp4"
output_dir: "output"
debug_dir: "debug"

# Tracking
detection_interval: null    # null derives max(1, fps / 6) from the video
iou_threshold: 0.3          # minimum overlap to keep a face identity
smoothing_factor: 0.7       # weight of the fresh detection when smoothing
track_expiry_frames: 30     # frames without a match before a face is dropped

# Concealment effect
effect: "blur"              # "blur", "pixelate" or "emoji"
emoji: "🙂"
emoji_font: null            # TrueType font with emoji glyphs
emoji_backdrop: "#FFCC4D"   # opaque disk behind the emoji
blur_radius: 30
pixelate_divisions: 8
margin_x: 0.4               # extra width on each side, relative to the face
margin_y: 0.5               # extra height on each side (forehead, chin)

# Face detector
detector_model: "auto"      # "auto", "dnn" (needs models/) or "haar"
models_dir: "models"
detector_confidence: 0.5
min_face_size: 30

# Encoding
video_codec: "libx264"
video_bitrate: null         # null derives max(8 Mbps, width * height * 10)
audio_codec: "aac"
audio_sample_rate: 44100    # fallback when the source audio layout is unreadable
audio_channels: 2
"""

    return example_config


if __name__ == "__main__":
    example = create_example_config()
    with open("config_example.yaml", "w", encoding="utf-8") as f:
        f.write(example)
    print("Example configuration saved to config_example.yaml")

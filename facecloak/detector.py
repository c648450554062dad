"""
Face detection module for facecloak.

Detectors take one decoded RGB frame and return normalized face regions
with a bottom-left origin. The OpenCV detector prefers the res10 SSD DNN
model when its files are present in the models directory and falls back
to the Haar cascade bundled with OpenCV.
"""

import logging
from pathlib import Path
from typing import List

import cv2
import numpy as np

from .errors import DetectorError
from .geometry import Region, from_pixel_box

logger = logging.getLogger(__name__)

DNN_PROTOTXT = "deploy.prototxt"
DNN_WEIGHTS = "res10_300x300_ssd_iter_140000.caffemodel"
HAAR_CASCADE = "haarcascade_frontalface_default.xml"


class FaceDetector:
    """Base class for face detectors."""

    def detect(self, frame: np.ndarray) -> List[Region]:
        """
        Detect faces in one frame.

        Args:
            frame: RGB frame, HxWx3 uint8

        Returns:
            Normalized face regions, bottom-left origin

        Raises:
            DetectorError: If the detector fails internally
        """
        raise NotImplementedError


class OpenCVFaceDetector(FaceDetector):
    """Face detector using OpenCV's DNN SSD model or Haar cascade."""

    def __init__(self, model: str = "auto", models_dir: Path = Path("models"),
                 confidence: float = 0.5, scale_factor: float = 1.1,
                 min_neighbors: int = 5, min_face_size: int = 30):
        self.model = model
        self.models_dir = Path(models_dir)
        self.confidence = confidence
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_face_size = min_face_size
        self.net = None
        self.cascade = None

        self._load_face_detector()

    @classmethod
    def from_config(cls, config) -> "OpenCVFaceDetector":
        return cls(
            model=config.detector_model,
            models_dir=config.models_dir,
            confidence=config.detector_confidence,
            scale_factor=config.haar_scale_factor,
            min_neighbors=config.haar_min_neighbors,
            min_face_size=config.min_face_size,
        )

    @property
    def backend(self) -> str:
        return "dnn" if self.net is not None else "haar"

    def _load_face_detector(self):
        """Load the DNN model if available, otherwise the Haar cascade."""
        prototxt_path = self.models_dir / DNN_PROTOTXT
        model_path = self.models_dir / DNN_WEIGHTS

        if self.model in ("auto", "dnn"):
            if prototxt_path.exists() and model_path.exists():
                self.net = cv2.dnn.readNetFromCaffe(str(prototxt_path), str(model_path))
                logger.info("Loaded OpenCV DNN face detector")
                return
            if self.model == "dnn":
                raise FileNotFoundError(
                    f"DNN face detector files not found in {self.models_dir}/ "
                    f"(expected {DNN_PROTOTXT} and {DNN_WEIGHTS})"
                )
            logger.info(f"DNN model not found in {self.models_dir}/, using Haar cascade")

        cascade_path = cv2.data.haarcascades + HAAR_CASCADE
        self.cascade = cv2.CascadeClassifier(cascade_path)
        if self.cascade.empty():
            raise FileNotFoundError(f"Could not load Haar cascade: {cascade_path}")
        logger.info("Loaded Haar cascade face detector")

    def detect(self, frame: np.ndarray) -> List[Region]:
        try:
            if self.net is not None:
                boxes = self._detect_faces_dnn(frame)
            else:
                boxes = self._detect_faces_haar(frame)
        except cv2.error as e:
            raise DetectorError(f"Face detection failed: {e}") from e

        height, width = frame.shape[:2]
        regions = []
        for x, y, w, h in boxes:
            region = from_pixel_box(x, y, w, h, width, height)
            if region is not None:
                regions.append(region)
        return regions

    def _detect_faces_dnn(self, frame: np.ndarray) -> List[tuple]:
        """Detect faces using DNN model."""
        h, w = frame.shape[:2]

        # The Caffe model was trained on BGR input
        bgr = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
        blob = cv2.dnn.blobFromImage(bgr, 1.0, (300, 300), [104, 117, 123])
        self.net.setInput(blob)
        detections = self.net.forward()

        boxes = []
        for i in range(detections.shape[2]):
            confidence = detections[0, 0, i, 2]
            if confidence <= self.confidence:
                continue
            x0, y0, x1, y1 = (detections[0, 0, i, 3:7] * np.array([w, h, w, h])).tolist()
            if x1 > x0 and y1 > y0:
                boxes.append((x0, y0, x1 - x0, y1 - y0))
        return boxes

    def _detect_faces_haar(self, frame: np.ndarray) -> List[tuple]:
        """Detect faces using Haar cascade."""
        gray = cv2.cvtColor(frame, cv2.COLOR_RGB2GRAY)
        faces = self.cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_face_size, self.min_face_size),
        )
        return [tuple(float(v) for v in face) for face in faces]

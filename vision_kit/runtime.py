from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from .config import PipelineConfig
from .errors import InvalidArgument, VisionKitError
from .masks import MaskDecoder, resize_bitmap
from .postprocess import DetectionPostprocessor
from .tensor import ImageBuffer, Tensor
from .types import DetectedObject, ImageSegment

LOGGER = logging.getLogger(__name__)

# progress(stage, done, total); stage is "nms" (per candidate) or "mask" (per row)
ProgressCallback = Callable[[str, int, int], None]
MaskSource = Callable[[int, DetectedObject], Optional[Tensor]]


@dataclass
class PipelineResult:
    detections: List[DetectedObject]
    segments: List[ImageSegment] = field(default_factory=list)
    # Indices into `detections` whose mask could not be decoded.
    failed_segments: List[int] = field(default_factory=list)


class DetectionPipeline:
    """
    Plug-and-play post-processing: raw detector tensor -> detections -> masks.

    Inference itself happens elsewhere; the pipeline only prepares input tensors
    (``preprocess``) and interprets output tensors. Components are plain values
    owned by the pipeline, nothing is global.
    """

    def __init__(
        self,
        cfg: PipelineConfig = PipelineConfig(),
        class_names: Optional[Sequence[str]] = None,
    ):
        self.cfg = cfg
        self.class_names = tuple(class_names) if class_names is not None else None
        self.post = DetectionPostprocessor(cfg.post_config(self.class_names))
        self.mask_decoder = MaskDecoder(cfg.mask_config())

    def preprocess(self, image: Union[ImageBuffer, np.ndarray]) -> Tensor:
        """Image -> [1, H, W, C] tensor (or [1, C, H, W] when ``channels_first``)."""

        tensor = Tensor.from_image(
            image,
            channels=self.cfg.channels,
            normalize=self.cfg.normalize,
            mean=self.cfg.mean,
            std=self.cfg.std,
            swap_rb=self.cfg.swap_rb,
        )
        if not self.cfg.channels_first:
            return tensor
        with tensor:
            return tensor.to_channels_first()

    def detect(
        self,
        detection_output: Tensor,
        image_width: int,
        image_height: int,
        progress: Optional[ProgressCallback] = None,
    ) -> List[DetectedObject]:
        nms_progress = None
        if progress is not None:
            def nms_progress(done: int, total: int) -> None:
                progress("nms", done, total)

        detections = self.post.process(detection_output, image_width, image_height, progress=nms_progress)
        LOGGER.debug("Pipeline kept %d detections for %dx%d image", len(detections), image_width, image_height)
        return detections

    def segment(
        self,
        detection: DetectedObject,
        mask_output: Tensor,
        progress: Optional[ProgressCallback] = None,
    ) -> ImageSegment:
        """Decode one detection's mask and align it to the detection's box."""

        row_progress = None
        if progress is not None:
            def row_progress(done: int, total: int) -> None:
                progress("mask", done, total)

        bitmap = self.mask_decoder.decode(mask_output, progress=row_progress)
        box = detection.bounding_box
        width = max(1, int(round(box.width)))
        height = max(1, int(round(box.height)))
        return ImageSegment.create(detection, resize_bitmap(bitmap, width, height))

    def segment_all(
        self,
        detections: Sequence[DetectedObject],
        mask_outputs: Sequence[Optional[Tensor]],
        progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """
        Decode one mask per detection. A failing mask is logged and skipped; the
        remaining detections are still segmented. ``None`` entries yield a
        segment without a mask.
        """

        if len(mask_outputs) != len(detections):
            raise InvalidArgument(f"Got {len(mask_outputs)} mask tensors for {len(detections)} detections")
        return self._segment(list(detections), lambda idx, _det: mask_outputs[idx], progress)

    def run(
        self,
        detection_output: Tensor,
        image_width: int,
        image_height: int,
        mask_source: Optional[MaskSource] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """
        Decode detections and, if `mask_source` is given, their masks.

        Args:
            mask_source: called as ``mask_source(index, detection)`` for every kept
                detection; returns that detection's segmentation tensor or None
            progress: see ``ProgressCallback``
        """

        detections = self.detect(detection_output, image_width, image_height, progress=progress)
        if mask_source is None:
            return PipelineResult(detections=detections)
        return self._segment(detections, mask_source, progress)

    def _segment(
        self,
        detections: List[DetectedObject],
        mask_source: MaskSource,
        progress: Optional[ProgressCallback],
    ) -> PipelineResult:
        result = PipelineResult(detections=detections)
        for idx, det in enumerate(detections):
            mask_output = mask_source(idx, det)
            if mask_output is None:
                result.segments.append(ImageSegment.create(det))
                continue
            try:
                result.segments.append(self.segment(det, mask_output, progress))
            except VisionKitError as exc:
                LOGGER.warning("Skipping mask for detection %d (%s): %s", idx, det.class_name, exc)
                result.failed_segments.append(idx)
        return result

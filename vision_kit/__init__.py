"""
Numeric core for interpreting vision-model output.

A small ``Tensor`` type plus the ops needed around inference, and the
post-processing chain that turns raw detector / segmentation tensors into
``DetectedObject`` boxes and RGBA mask bitmaps: decode -> NMS -> mask decode.
Inference itself is out of scope; any runtime that yields arrays can feed it.
Depends on NumPy, plus OpenCV for mask resizing and drawing.
"""

from .config import PipelineConfig, load_pipeline_config
from .errors import DisposedTensorError, InvalidArgument, NotSupported, ShapeMismatch, VisionKitError
from .masks import Bitmap, MaskConfig, MaskDecoder, class_color, mask_iou, resize_bitmap
from .metadata import load_class_names
from .nms import NMSConfig, box_iou, nms, nms_detections
from .postprocess import DecoderConfig, DetectionDecoder, DetectionPostprocessor, PostConfig
from .runtime import DetectionPipeline, PipelineResult
from .tensor import ArrayImage, ImageBuffer, Layout, Tensor
from .types import BoundingBox, DetectedObject, ImageSegment
from .visualize import draw_detections, overlay_segments

__all__ = [
    "ArrayImage",
    "Bitmap",
    "BoundingBox",
    "DecoderConfig",
    "DetectedObject",
    "DetectionDecoder",
    "DetectionPipeline",
    "DetectionPostprocessor",
    "DisposedTensorError",
    "ImageBuffer",
    "ImageSegment",
    "InvalidArgument",
    "Layout",
    "MaskConfig",
    "MaskDecoder",
    "NMSConfig",
    "NotSupported",
    "PipelineConfig",
    "PipelineResult",
    "PostConfig",
    "ShapeMismatch",
    "Tensor",
    "VisionKitError",
    "box_iou",
    "class_color",
    "draw_detections",
    "load_class_names",
    "load_pipeline_config",
    "mask_iou",
    "nms",
    "nms_detections",
    "overlay_segments",
    "resize_bitmap",
]

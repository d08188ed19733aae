import unittest

import numpy as np

from vision_kit.errors import InvalidArgument, ShapeMismatch
from vision_kit.nms import NMSConfig, box_iou, nms, nms_detections
from vision_kit.types import BoundingBox, DetectedObject


def _det(x, y, w, h, conf, class_id=0) -> DetectedObject:
    return DetectedObject(class_id, f"class_{class_id}", conf, BoundingBox(x, y, w, h))


class TestBoxIou(unittest.TestCase):
    def test_identical_and_disjoint(self) -> None:
        box = np.array([0, 0, 10, 10], dtype=np.float64)
        others = np.array([[0, 0, 10, 10], [20, 20, 5, 5], [10, 0, 10, 10]], dtype=np.float64)
        iou = box_iou(box, others)
        self.assertTrue(np.allclose(iou, [1.0, 0.0, 0.0]))

    def test_partial_overlap(self) -> None:
        box = np.array([0, 0, 10, 10], dtype=np.float64)
        iou = box_iou(box, np.array([[5, 0, 10, 10]], dtype=np.float64))
        self.assertAlmostEqual(float(iou[0]), 50 / 150)

    def test_zero_area_boxes(self) -> None:
        box = np.array([0, 0, 0, 0], dtype=np.float64)
        iou = box_iou(box, np.array([[0, 0, 0, 0]], dtype=np.float64))
        self.assertEqual(float(iou[0]), 0.0)


class TestNms(unittest.TestCase):
    def test_near_identical_boxes_keep_highest(self) -> None:
        boxes = np.array([[10, 10, 100, 100], [12, 11, 100, 100]], dtype=np.float64)
        scores = np.array([0.8, 0.9])
        keep = nms(boxes, scores, NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [1])

    def test_low_overlap_keeps_both(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [8, 8, 10, 10]], dtype=np.float64)
        keep = nms(boxes, np.array([0.9, 0.8]), NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 1])

    def test_iou_equal_to_threshold_is_kept(self) -> None:
        # IoU of these boxes is exactly 0.5
        boxes = np.array([[0, 0, 30, 10], [10, 0, 30, 10]], dtype=np.float64)
        keep = nms(boxes, np.array([0.9, 0.8]), NMSConfig(iou_threshold=0.5))
        self.assertEqual(keep.tolist(), [0, 1])

    def test_ties_break_by_index(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 10], [0, 0, 10, 10]], dtype=np.float64)
        scores = np.array([0.7, 0.7, 0.7])
        for _ in range(3):
            self.assertEqual(nms(boxes, scores, NMSConfig()).tolist(), [0])

    def test_result_ordered_by_score(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [50, 50, 10, 10], [100, 100, 10, 10]], dtype=np.float64)
        keep = nms(boxes, np.array([0.2, 0.9, 0.5]), NMSConfig())
        self.assertEqual(keep.tolist(), [1, 2, 0])

    def test_score_threshold_and_cap(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [50, 50, 10, 10], [100, 100, 10, 10]], dtype=np.float64)
        scores = np.array([0.2, 0.9, 0.5])
        self.assertEqual(nms(boxes, scores, NMSConfig(score_threshold=0.3)).tolist(), [1, 2])
        self.assertEqual(nms(boxes, scores, NMSConfig(max_detections=1)).tolist(), [1])

    def test_suppressed_and_low_scores_are_dropped(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [0, 0, 10, 10], [1, 0, 10, 10]], dtype=np.float64)
        scores = np.array([0.1, 0.6, 0.05])
        keep = nms(boxes, scores, NMSConfig(score_threshold=0.2))
        self.assertEqual(keep.tolist(), [1])

    def test_empty_and_bad_input(self) -> None:
        self.assertEqual(nms(np.zeros((0, 4)), np.zeros((0,)), NMSConfig()).tolist(), [])
        with self.assertRaises(ShapeMismatch):
            nms(np.zeros((2, 3)), np.zeros((2,)), NMSConfig())
        with self.assertRaises(InvalidArgument):
            nms(np.zeros((2, 4)), np.zeros((3,)), NMSConfig())

    def test_progress_reports_every_candidate(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [1, 1, 10, 10], [50, 50, 10, 10]], dtype=np.float64)
        calls = []
        nms(boxes, np.array([0.9, 0.8, 0.7]), NMSConfig(), progress=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(1, 3), (2, 3), (3, 3)])

    def test_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            NMSConfig(iou_threshold=0.0)
        with self.assertRaises(ValueError):
            NMSConfig(max_detections=0)


class TestNmsDetections(unittest.TestCase):
    def test_detections(self) -> None:
        dets = [
            _det(10, 10, 100, 100, 0.8),
            _det(12, 11, 100, 100, 0.9),
            _det(300, 300, 20, 20, 0.4, class_id=2),
        ]
        kept = nms_detections(dets, NMSConfig(iou_threshold=0.5))
        self.assertEqual([d.confidence for d in kept], [0.9, 0.4])
        self.assertIs(kept[0], dets[1])

    def test_empty(self) -> None:
        self.assertEqual(nms_detections([], NMSConfig()), [])


class TestBoundingBox(unittest.TestCase):
    def test_geometry(self) -> None:
        a = BoundingBox(0, 0, 10, 10)
        b = BoundingBox(5, 5, 10, 10)
        self.assertEqual(a.as_xyxy(), (0, 0, 10, 10))
        self.assertEqual(a.center, (5, 5))
        self.assertAlmostEqual(a.iou(b), 25 / 175)
        self.assertEqual(a.union(b).as_xywh(), (0, 0, 15, 15))
        self.assertTrue(a.contains(0, 9.5))
        self.assertFalse(a.contains(10, 5))
        self.assertEqual(a.normalized(20, 40).as_xywh(), (0, 0, 0.5, 0.25))

    def test_detected_object_helpers(self) -> None:
        a = _det(0, 0, 10, 10, 0.6, class_id=1)
        b = _det(3, 4, 10, 10, 0.9, class_id=2)
        self.assertAlmostEqual(a.distance_to(b), 5.0)
        self.assertFalse(a.overlaps_with(b))
        self.assertTrue(a.overlaps_with(b, iou_threshold=0.1))
        merged = a.merge_with(b, merge_box=True)
        self.assertEqual(merged.class_id, 2)
        self.assertEqual(merged.confidence, 0.9)
        self.assertEqual(merged.bounding_box.as_xywh(), (0, 0, 13, 14))
        self.assertIn("class_1", str(a))


if __name__ == "__main__":
    unittest.main()

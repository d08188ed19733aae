import unittest

import numpy as np

from vision_kit.errors import InvalidArgument, NotSupported, ShapeMismatch
from vision_kit.masks import Bitmap, MaskConfig, MaskDecoder, class_color, mask_iou, resize_bitmap
from vision_kit.tensor import Layout, Tensor
from vision_kit.types import BoundingBox, DetectedObject, ImageSegment


def _bitmap(on) -> Bitmap:
    on = np.asarray(on, dtype=bool)
    bm = Bitmap.empty(on.shape[1], on.shape[0])
    bm.pixels[on] = (255, 255, 255, 255)
    bm.labels[on] = 0
    return bm


class TestMaskDecoder(unittest.TestCase):
    def test_single_channel_threshold(self) -> None:
        t = Tensor.from_data((1, 2, 2, 1), [0.9, 0.1, 0.1, 0.9])
        bm = MaskDecoder(MaskConfig(threshold=0.5)).decode(t)
        self.assertEqual((bm.width, bm.height), (2, 2))
        self.assertEqual(bm.is_set.reshape(-1).tolist(), [True, False, False, True])
        self.assertEqual(bm.pixels[0, 0].tolist(), [255, 255, 255, 255])
        self.assertEqual(bm.pixels[0, 1].tolist(), [0, 0, 0, 0])

    def test_value_at_threshold_is_unset(self) -> None:
        t = Tensor.from_data((2, 2), [0.5, 0.50001, 0.0, 1.0])
        bm = MaskDecoder(MaskConfig(threshold=0.5)).decode(t)
        self.assertEqual(bm.is_set.reshape(-1).tolist(), [False, True, False, True])

    def test_alpha_is_binary(self) -> None:
        t = Tensor((1, 8, 8, 1)).fill_random(0, 1, rng=np.random.default_rng(4))
        bm = MaskDecoder().decode(t)
        self.assertTrue(set(np.unique(bm.pixels[:, :, 3]).tolist()) <= {0, 255})

    def test_foreground_colour(self) -> None:
        t = Tensor.from_data((1, 1), [0.9])
        bm = MaskDecoder(MaskConfig(foreground=(10, 20, 30))).decode(t)
        self.assertEqual(bm.pixels[0, 0].tolist(), [10, 20, 30, 255])

    def test_multi_channel_uses_class_palette(self) -> None:
        # one row, two pixels, two classes
        t = Tensor.from_data((1, 1, 2, 2), [0.2, 0.8, 0.3, 0.4])
        bm = MaskDecoder().decode(t)
        self.assertEqual(bm.pixels[0, 0].tolist(), list(class_color(1)) + [255])
        self.assertEqual(bm.pixels[0, 1, 3], 0)
        self.assertEqual(bm.labels.tolist(), [[1, -1]])

    def test_channels_first_mask(self) -> None:
        # [1, C=2, H=1, W=2]: class 0 plane then class 1 plane
        t = Tensor.from_data((1, 2, 1, 2), [0.9, 0.1, 0.05, 0.7], layout=Layout.CHANNELS_FIRST)
        bm = MaskDecoder().decode(t)
        self.assertEqual(bm.labels.tolist(), [[0, 1]])

    def test_apply_sigmoid(self) -> None:
        t = Tensor.from_data((1, 2), [3.0, -3.0])
        bm = MaskDecoder(MaskConfig(apply_sigmoid=True)).decode(t)
        self.assertEqual(bm.is_set.reshape(-1).tolist(), [True, False])

    def test_progress_per_row(self) -> None:
        calls = []
        MaskDecoder().decode(Tensor((1, 3, 2, 1)), progress=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(1, 3), (2, 3), (3, 3)])

    def test_bad_shapes(self) -> None:
        decoder = MaskDecoder()
        with self.assertRaises(NotSupported):
            decoder.decode(Tensor((2, 2, 2, 1)))
        with self.assertRaises(ShapeMismatch):
            decoder.decode(Tensor((4,)))
        with self.assertRaises(InvalidArgument):
            decoder.decode(Tensor((1, 2, 2, 0)))


class TestClassColor(unittest.TestCase):
    def test_deterministic_and_distinct(self) -> None:
        colors = [class_color(i) for i in range(10)]
        self.assertEqual(colors, [class_color(i) for i in range(10)])
        self.assertEqual(len(set(colors)), 10)
        for c in colors:
            self.assertTrue(all(0 <= v <= 255 for v in c))


class TestBitmapHelpers(unittest.TestCase):
    def test_resize_nearest(self) -> None:
        bm = _bitmap([[1, 0], [0, 1]])
        big = resize_bitmap(bm, 4, 4)
        self.assertEqual((big.width, big.height), (4, 4))
        self.assertEqual(big.count_set(), 8)
        self.assertTrue(set(np.unique(big.pixels[:, :, 3]).tolist()) <= {0, 255})
        self.assertTrue(set(np.unique(big.labels).tolist()) <= {-1, 0})

    def test_resize_same_size_copies(self) -> None:
        bm = _bitmap([[1, 0]])
        out = resize_bitmap(bm, 2, 1)
        out.pixels[0, 0, 3] = 0
        self.assertTrue(bm.is_set[0, 0])

    def test_resize_rejects_empty_target(self) -> None:
        with self.assertRaises(InvalidArgument):
            resize_bitmap(_bitmap([[1]]), 0, 3)

    def test_resize_rejects_empty_source(self) -> None:
        with self.assertRaises(InvalidArgument):
            resize_bitmap(Bitmap.empty(0, 0), 4, 4)

    def test_mask_iou(self) -> None:
        a = _bitmap([[1, 1], [0, 0]])
        b = _bitmap([[1, 0], [1, 0]])
        self.assertAlmostEqual(mask_iou(a, b), 1 / 3)
        self.assertEqual(mask_iou(_bitmap([[0]]), _bitmap([[0]])), 0.0)
        self.assertAlmostEqual(mask_iou(a, resize_bitmap(a, 4, 4)), 1.0)

    def test_bitmap_shape_checked(self) -> None:
        with self.assertRaises(ShapeMismatch):
            Bitmap(pixels=np.zeros((2, 2, 3), dtype=np.uint8))


class TestImageSegment(unittest.TestCase):
    def _det(self) -> DetectedObject:
        return DetectedObject(4, "dog", 0.8, BoundingBox(10, 10, 20, 20))

    def test_area_and_color(self) -> None:
        seg = ImageSegment.create(self._det(), _bitmap([[1, 0], [1, 1]]))
        self.assertEqual(seg.area, 3.0)
        self.assertEqual(seg.color, class_color(4))
        self.assertEqual(seg.class_name, "dog")
        self.assertEqual(ImageSegment.create(self._det()).area, 400.0)

    def test_contains_point(self) -> None:
        seg = ImageSegment.create(self._det(), _bitmap([[1, 0], [0, 0]]))
        self.assertTrue(seg.contains_point(12, 12))
        self.assertFalse(seg.contains_point(25, 12))
        self.assertFalse(seg.contains_point(5, 5))


if __name__ == "__main__":
    unittest.main()

"""
Owned, shaped float32 buffer used to carry model inputs and outputs.

A ``Tensor`` owns a flat ``numpy.float32`` buffer whose length always equals the
product of its shape. Multi-index access uses row-major strides computed right to
left over the shape; the same rule applies to both layouts, the layout flag only
records what each axis means (NHWC vs NCHW).

Operations that transform a tensor (reshape, ops in ``vision_kit.ops``) always
allocate a fresh buffer, so two tensors never share storage.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterator, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

import numpy as np

from .errors import DisposedTensorError, InvalidArgument, NotSupported, ShapeMismatch

Shape = Tuple[int, ...]
Number = Union[int, float]


class Layout(str, Enum):
    CHANNELS_LAST = "NHWC"
    CHANNELS_FIRST = "NCHW"


@runtime_checkable
class ImageBuffer(Protocol):
    """
    Minimal read-only image capability: size plus an RGBA accessor.

    Channel values are 0-255 intensities; (0, 0) is the top-left pixel.
    """

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    def get_pixel(self, x: int, y: int) -> Tuple[float, float, float, float]: ...


class ArrayImage:
    """
    ``ImageBuffer`` over a NumPy array shaped (H, W), (H, W, 1), (H, W, 3) or (H, W, 4).

    Channels are read as gray, RGB or RGBA. Missing alpha is reported as 255.
    """

    def __init__(self, pixels: np.ndarray):
        arr = np.asarray(pixels)
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3 or arr.shape[2] not in (1, 3, 4):
            raise InvalidArgument(f"Expected image shape (H, W), (H, W, 1|3|4), got {arr.shape}")
        self._pixels = arr

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    def get_pixel(self, x: int, y: int) -> Tuple[float, float, float, float]:
        px = [float(v) for v in self._pixels[y, x]]
        if len(px) == 1:
            return px[0], px[0], px[0], 255.0
        if len(px) == 3:
            return px[0], px[1], px[2], 255.0
        return px[0], px[1], px[2], px[3]

    def as_rgba(self) -> np.ndarray:
        px = self._pixels.astype(np.float32)
        h, w, c = px.shape
        rgba = np.full((h, w, 4), 255.0, dtype=np.float32)
        if c == 1:
            rgba[:, :, :3] = px
        else:
            rgba[:, :, :c] = px
        return rgba


def _rgba_array(image: ImageBuffer) -> np.ndarray:
    as_rgba = getattr(image, "as_rgba", None)
    if callable(as_rgba):
        return np.asarray(as_rgba(), dtype=np.float32)

    out = np.empty((int(image.height), int(image.width), 4), dtype=np.float32)
    for y in range(out.shape[0]):
        for x in range(out.shape[1]):
            out[y, x] = image.get_pixel(x, y)
    return out


def _validate_shape(shape: Sequence[int]) -> Shape:
    dims = tuple(int(d) for d in shape)
    if len(dims) == 0:
        raise InvalidArgument("Tensor rank must be >= 1")
    if any(d < 0 for d in dims):
        raise InvalidArgument(f"Tensor dimensions must be non-negative, got {dims}")
    return dims


def _volume(shape: Shape) -> int:
    n = 1
    for d in shape:
        n *= d
    return n


def _row_major_strides(shape: Shape) -> Shape:
    strides = [0] * len(shape)
    stride = 1
    for axis in range(len(shape) - 1, -1, -1):
        strides[axis] = stride
        stride *= shape[axis]
    return tuple(strides)


class Tensor:
    __slots__ = ("_shape", "_strides", "_data", "layout")

    def __init__(
        self,
        shape: Sequence[int],
        fill: Number = 0.0,
        layout: Layout = Layout.CHANNELS_LAST,
    ):
        dims = _validate_shape(shape)
        self._init(dims, np.full(_volume(dims), fill, dtype=np.float32), layout)

    def _init(self, shape: Shape, buffer: np.ndarray, layout: Layout) -> None:
        self._shape = shape
        self._strides = _row_major_strides(shape)
        self._data: Optional[np.ndarray] = buffer
        self.layout = Layout(layout)

    @classmethod
    def _wrap(cls, shape: Sequence[int], buffer: np.ndarray, layout: Layout = Layout.CHANNELS_LAST) -> "Tensor":
        # Takes ownership of `buffer`; callers pass freshly allocated arrays only.
        t = cls.__new__(cls)
        t._init(_validate_shape(shape), np.asarray(buffer, dtype=np.float32).reshape(-1), layout)
        return t

    # ------------------------------------------------------------------ #
    # Factories
    # ------------------------------------------------------------------ #
    @classmethod
    def from_data(
        cls,
        shape: Sequence[int],
        data: Any,
        layout: Layout = Layout.CHANNELS_LAST,
    ) -> "Tensor":
        """Copy `data` (any array-like) into a new tensor; its length must match `shape`."""

        dims = _validate_shape(shape)
        buf = np.array(data, dtype=np.float32).reshape(-1)
        expected = _volume(dims)
        if buf.size != expected:
            raise ShapeMismatch(
                f"Data has {buf.size} elements but shape {dims} needs {expected}",
                (buf.size,),
                dims,
            )
        return cls._wrap(dims, buf, layout)

    @classmethod
    def from_image(
        cls,
        image: Union[ImageBuffer, np.ndarray],
        channels: int = 3,
        normalize: bool = True,
        mean: Optional[Sequence[float]] = None,
        std: Optional[Sequence[float]] = None,
        swap_rb: bool = False,
    ) -> "Tensor":
        """
        Expand an image into a [1, H, W, channels] channels-last tensor.

        Args:
            image: an ``ImageBuffer`` or a NumPy array accepted by ``ArrayImage``
            channels: how many of (R, G, B, A) to keep, 1-4
            normalize: divide 0-255 intensities by 255
            mean/std: optional per-channel ``(v - mean) / std`` applied after normalisation
            swap_rb: swap red and blue (RGB <-> BGR) before channel selection
        """

        if not 1 <= int(channels) <= 4:
            raise InvalidArgument(f"channels must be within [1, 4], got {channels}")
        channels = int(channels)
        if isinstance(image, np.ndarray):
            image = ArrayImage(image)

        rgba = _rgba_array(image)
        if swap_rb:
            rgba = rgba[:, :, [2, 1, 0, 3]]
        values = np.array(rgba[:, :, :channels], dtype=np.float32)
        if normalize:
            values /= 255.0
        if mean is not None:
            values -= _per_channel(mean, channels, "mean")
        if std is not None:
            scale = _per_channel(std, channels, "std")
            if np.any(scale == 0):
                raise InvalidArgument("std must not contain zeros")
            values /= scale

        h, w = values.shape[:2]
        return cls._wrap((1, h, w, channels), values.reshape(-1), Layout.CHANNELS_LAST)

    @classmethod
    def identity(cls, n: int) -> "Tensor":
        if n < 1:
            raise InvalidArgument(f"identity size must be >= 1, got {n}")
        return cls._wrap((n, n), np.eye(n, dtype=np.float32).reshape(-1))

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def strides(self) -> Shape:
        return self._strides

    @property
    def rank(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        return _volume(self._shape)

    @property
    def is_disposed(self) -> bool:
        return self._data is None

    @property
    def _buf(self) -> np.ndarray:
        if self._data is None:
            raise DisposedTensorError(f"Tensor{self._shape} has been disposed")
        return self._data

    def view(self) -> np.ndarray:
        """Read-only shaped view of the buffer (no copy)."""

        v = self._buf.reshape(self._shape)
        v.flags.writeable = False
        return v

    def flat_view(self) -> np.ndarray:
        v = self._buf.view()
        v.flags.writeable = False
        return v

    # ------------------------------------------------------------------ #
    # Indexing
    # ------------------------------------------------------------------ #
    def flat_index(self, index: Sequence[int]) -> int:
        if len(index) != len(self._shape):
            raise ShapeMismatch(
                f"Index {tuple(index)} has {len(index)} components but tensor rank is {len(self._shape)}",
                index,
                self._shape,
            )
        offset = 0
        for axis, (i, dim, stride) in enumerate(zip(index, self._shape, self._strides)):
            i = int(i)
            if not 0 <= i < dim:
                raise IndexError(f"Index {i} is out of range for axis {axis} with size {dim}")
            offset += i * stride
        return offset

    def __getitem__(self, index: Union[int, Sequence[int]]) -> float:
        if not isinstance(index, tuple):
            index = (index,)
        return float(self._buf[self.flat_index(index)])

    def __setitem__(self, index: Union[int, Sequence[int]], value: Number) -> None:
        if not isinstance(index, tuple):
            index = (index,)
        self._buf[self.flat_index(index)] = value

    # ------------------------------------------------------------------ #
    # In-place fills
    # ------------------------------------------------------------------ #
    def fill(self, value: Number) -> "Tensor":
        self._buf.fill(value)
        return self

    def fill_random(self, low: float, high: float, rng: Optional[np.random.Generator] = None) -> "Tensor":
        if low > high:
            raise InvalidArgument(f"low ({low}) must be <= high ({high})")
        rng = rng if rng is not None else np.random.default_rng()
        buf = self._buf
        buf[:] = rng.uniform(low, high, size=buf.size)
        return self

    def fill_normal(self, mean: float = 0.0, stddev: float = 1.0, rng: Optional[np.random.Generator] = None) -> "Tensor":
        """
        Gaussian fill using the Box-Muller transform.

        Samples are produced in pairs; for an odd length the last element takes the
        first value of one extra pair.
        """

        if stddev < 0:
            raise InvalidArgument(f"stddev must be >= 0, got {stddev}")
        rng = rng if rng is not None else np.random.default_rng()
        buf = self._buf
        n = buf.size
        if n == 0:
            return self

        pairs = (n + 1) // 2
        u1 = 1.0 - rng.random(pairs)  # (0, 1], keeps log() finite
        u2 = rng.random(pairs)
        radius = np.sqrt(-2.0 * np.log(u1))
        theta = 2.0 * np.pi * u2
        z = np.empty(pairs * 2, dtype=np.float64)
        z[0::2] = radius * np.cos(theta)
        z[1::2] = radius * np.sin(theta)
        buf[:] = mean + stddev * z[:n]
        return self

    # ------------------------------------------------------------------ #
    # Shape changes (always copy)
    # ------------------------------------------------------------------ #
    def reshape(self, new_shape: Sequence[int]) -> "Tensor":
        dims = _validate_shape(new_shape)
        if _volume(dims) != self.size:
            raise ShapeMismatch(
                f"Cannot reshape {self._shape} ({self.size} elements) into {dims} ({_volume(dims)} elements)",
                self._shape,
                dims,
            )
        return Tensor._wrap(dims, self._buf.copy(), self.layout)

    def flatten(self) -> "Tensor":
        return self.reshape((self.size,))

    def to_channels_first(self) -> "Tensor":
        if self.layout is Layout.CHANNELS_FIRST:
            return self.copy()
        if self.rank != 4:
            raise NotSupported(f"Layout conversion needs a rank-4 tensor, got shape {self._shape}")
        arr = self.view().transpose(0, 3, 1, 2)
        return Tensor._wrap(arr.shape, np.ascontiguousarray(arr).reshape(-1).copy(), Layout.CHANNELS_FIRST)

    def to_channels_last(self) -> "Tensor":
        if self.layout is Layout.CHANNELS_LAST:
            return self.copy()
        if self.rank != 4:
            raise NotSupported(f"Layout conversion needs a rank-4 tensor, got shape {self._shape}")
        arr = self.view().transpose(0, 2, 3, 1)
        return Tensor._wrap(arr.shape, np.ascontiguousarray(arr).reshape(-1).copy(), Layout.CHANNELS_LAST)

    # ------------------------------------------------------------------ #
    # Copy out / lifecycle
    # ------------------------------------------------------------------ #
    def copy(self) -> "Tensor":
        return Tensor._wrap(self._shape, self._buf.copy(), self.layout)

    def to_array(self) -> np.ndarray:
        """Flat copy of the buffer."""

        return self._buf.copy()

    def numpy(self) -> np.ndarray:
        """Shaped copy of the buffer."""

        return self._buf.reshape(self._shape).copy()

    def tolist(self) -> list:
        return self._buf.tolist()

    def __iter__(self) -> Iterator[float]:
        return iter(self._buf.tolist())

    def dispose(self) -> None:
        self._data = None

    def __enter__(self) -> "Tensor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self._data is None else self.layout.name
        return f"Tensor(shape={self._shape}, {state})"

    # Operator sugar for vision_kit.ops
    def __add__(self, other: "Tensor") -> "Tensor":
        from . import ops

        return ops.add(self, other)

    def __sub__(self, other: "Tensor") -> "Tensor":
        from . import ops

        return ops.subtract(self, other)

    def __mul__(self, other: Union["Tensor", Number]) -> "Tensor":
        from . import ops

        if isinstance(other, Tensor):
            return ops.multiply(self, other)
        return ops.scale(self, other)

    __rmul__ = __mul__

    def __truediv__(self, other: "Tensor") -> "Tensor":
        from . import ops

        return ops.divide(self, other)

    def __matmul__(self, other: "Tensor") -> "Tensor":
        from . import ops

        return ops.matmul(self, other)


def _per_channel(values: Sequence[float], channels: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.size != channels:
        raise InvalidArgument(f"{name} needs {channels} values, got {arr.size}")
    return arr

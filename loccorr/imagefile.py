"""Image container, input detection, reading, histogram tools and binary packing."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image as PILImage

from loccorr.fits import read_fits

log = logging.getLogger(__name__)

GRASSHOPPER_CAPT_NAME = "grasshopper"


class ImageError(ValueError):
    """An image cannot be read or processed."""


class InputType(enum.Enum):
    WRONG = 0
    DIRECTORY = 1
    BMP = 2
    FITS = 3
    GZIP = 4
    GIF = 5
    JPEG = 6
    PNG = 7
    CAPT_GRASSHOPPER = 8
    CAPT_BASLER = 9


_SIGNATURES: tuple[tuple[bytes, InputType], ...] = (
    (b"BM", InputType.BMP),
    (b"SIMPLE", InputType.FITS),
    (b"\x1f\x8b\x08", InputType.GZIP),
    (b"GIF8", InputType.GIF),
    (b"\xff\xd8\xff\xdb", InputType.JPEG),
    (b"\xff\xd8\xff\xe0", InputType.JPEG),
    (b"\xff\xd8\xff\xe1", InputType.JPEG),
    (b"\x89\x50\x4e\x47", InputType.PNG),
)


@dataclass
class Image:
    """8-bit single-channel image; ``data`` has shape ``(height, width)``.

    Row 0 is the bottom row (FITS orientation). ``minval``/``maxval`` are
    computed from the data when not given.
    """

    data: np.ndarray
    minval: int | None = None
    maxval: int | None = None

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=np.uint8)
        if self.data.ndim != 2 or self.data.size == 0:
            raise ImageError("image data should be a non-empty two-dimensional array")
        if self.minval is None or self.maxval is None:
            self.minmax()

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def minmax(self) -> tuple[int, int]:
        """Recompute and store the extremal pixel values; return ``(min, max)``."""
        self.minval = int(self.data.min())
        self.maxval = int(self.data.max())
        return self.minval, self.maxval


def chkinput(name) -> InputType:
    """Classify ``name``: camera name, directory or image file type."""
    name = str(name)
    if name == GRASSHOPPER_CAPT_NAME:
        return InputType.CAPT_GRASSHOPPER
    path = Path(name)
    if path.is_dir():
        return InputType.DIRECTORY
    try:
        with path.open("rb") as stream:
            signature = stream.read(7)
    except OSError as exc:
        log.warning("Can't open file %s: %s", name, exc)
        return InputType.WRONG
    if len(signature) != 7:
        log.warning("Can't read file signature")
        return InputType.WRONG
    for magic, kind in _SIGNATURES:
        if signature.startswith(magic):
            return kind
    return InputType.WRONG


def u8_to_image(data) -> Image:
    """Build an image from 8-bit rows given top-down, flipping them into FITS order."""
    arr = np.asarray(data, dtype=np.uint8)
    if arr.ndim != 2:
        raise ImageError("image data should be two-dimensional")
    return Image(np.ascontiguousarray(arr[::-1]))


def _load_picture(name: str) -> np.ndarray:
    try:
        with PILImage.open(name) as pic:
            if pic.mode == "L":
                return np.asarray(pic, dtype=np.uint8)
            rgb = np.asarray(pic.convert("RGB"), dtype=np.uint32)
    except OSError as exc:
        raise ImageError(f"Error in loading the image {name}") from exc
    grey = (rgb[..., 0] * 77 + rgb[..., 1] * 150 + rgb[..., 2] * 29) >> 8
    return grey.astype(np.uint8)


def read_image(name) -> Image:
    """Read an image from any supported file type."""
    name = str(name)
    kind = chkinput(name)
    if kind in (InputType.DIRECTORY, InputType.WRONG,
                InputType.CAPT_GRASSHOPPER, InputType.CAPT_BASLER):
        raise ImageError("Bad file type to read")
    if kind in (InputType.FITS, InputType.GZIP):
        return Image(read_fits(name), minval=0, maxval=255)
    return u8_to_image(_load_picture(name))


def get_histogram(image: Image) -> np.ndarray:
    """Return the 256-bin histogram of the image's pixel values."""
    return np.bincount(image.data.ravel(), minlength=256)[:256].astype(np.int64)


def calc_background(image: Image, fixedbkg=0) -> int:
    """Estimate the background level from the histogram.

    A nonzero ``fixedbkg`` is used as the level instead, provided it does not
    exceed the image minimum.
    """
    if image.maxval == image.minval:
        raise ImageError("Zero or overilluminated image!")
    if fixedbkg:
        if fixedbkg > image.minval:
            raise ImageError("Image values too small")
        return int(fixedbkg)
    hist = get_histogram(image).tolist()
    modeidx = 0
    modeval = 0
    for i, count in enumerate(hist):
        if modeval < count:
            modeval, modeidx = count, i
    # A negative second difference wraps round in unsigned arithmetic, so only
    # a difference in 0..3 counts as a non-positive one.
    flat = [False] * 256
    for i in range(2, 254):
        diff = hist[i + 2] + hist[i - 2] - 2 * hist[i]
        flat[i] = 0 <= diff < 4
    flat[0] = flat[1] = flat[254] = flat[255] = True
    modeidx = max(modeidx, 2)
    if modeidx > 253:
        raise ImageError("Overilluminated image")
    for i in range(modeidx, 254):
        if flat[i] and flat[i + 1]:
            return i
    return modeidx


def _spread(levels: np.ndarray, nchannels: int) -> np.ndarray:
    flipped = np.ascontiguousarray(levels[::-1])
    if nchannels == 3:
        return np.repeat(flipped[..., None], 3, axis=2)
    return flipped


def _check_channels(nchannels: int) -> None:
    if nchannels not in (1, 3):
        raise ValueError("only 1 and 3 channels supported")


def linear(image: Image, nchannels: int) -> np.ndarray:
    """Stretch the image linearly onto 0..255, rows top-down, 1 or 3 channels."""
    _check_channels(nchannels)
    lo = np.float32(image.minval)
    span = float(image.maxval) - float(image.minval)
    scale = np.float32(255.0 / span) if span else np.float32(0.0)
    values = scale * (image.data.astype(np.float32) - lo)
    levels = np.clip(values, 0, 255).astype(np.uint8)
    return _spread(levels, nchannels)


def equalize(image: Image, nchannels: int, throwpart: float) -> np.ndarray:
    """Histogram-equalize the image, rows top-down, 1 or 3 channels.

    The darkest ``throwpart`` fraction of pixels is mapped to black.
    """
    _check_channels(nchannels)
    hist = get_histogram(image).tolist()
    total = image.width * image.height
    bpart = int(throwpart * total)
    nblack = 0
    startidx = 256
    for idx, count in enumerate(hist):
        nblack += count
        if nblack >= bpart:
            startidx = idx
            break
    startidx += 1
    part = (total + 1.0 - nblack) / 256.0
    table = np.zeros(256, dtype=np.uint8)
    acc = 0.0
    for i in range(startidx, 256):
        acc += hist[i]
        table[i] = min(int(acc / part), 255)
    return _spread(table[image.data], nchannels)


def write_jpg(image: Image, name, eq=False, throwpart: float = 0.5) -> Path:
    """Save the image as a greyscale JPEG (equalized when ``eq``); return the path.

    The file is written under a temporary name and then renamed into place.
    """
    pixels = equalize(image, 1, throwpart) if eq else linear(image, 1)
    target = Path(name)
    tmp = target.with_name(target.name + "-tmp")
    PILImage.fromarray(pixels, "L").save(tmp, format="JPEG", quality=95)
    os.replace(tmp, target)
    return target


def _packed(packed, width: int, height: int) -> np.ndarray:
    if width < 1 or height < 1:
        raise ValueError("image size should be positive")
    stride = (width + 7) // 8
    arr = np.frombuffer(bytes(packed), dtype=np.uint8) if isinstance(
        packed, (bytes, bytearray, memoryview)) else np.asarray(packed, dtype=np.uint8)
    if arr.size != stride * height:
        raise ValueError("packed data size doesn't match image size")
    bits = np.unpackbits(arr.reshape(height, stride), axis=1)
    return bits[:, :width]


def bin_to_image(packed, width: int, height: int) -> Image:
    """Unpack a bit-packed mask (MSB first, rows padded to bytes) into a 0/1 image."""
    return Image(_packed(packed, width, height).copy(), minval=0, maxval=1)


def image_to_bin(image: Image, bk) -> np.ndarray:
    """Pack pixels brighter than ``bk`` into bits, 8 pixels per byte, MSB first."""
    if image.width < 2 or image.height < 2:
        raise ValueError("image too small to binarize")
    return np.packbits(image.data > bk, axis=1)


def bin_to_labels(packed, width: int, height: int) -> np.ndarray:
    """Unpack a bit-packed mask into an integer 0/1 array ready for labelling."""
    return _packed(packed, width, height).astype(np.int64)
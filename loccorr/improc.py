"""Star detection on frames, centroid averaging and correction requests."""

from __future__ import annotations

import functools
import logging
import math
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import numpy as np
from PIL import Image as PILImage

from loccorr.config import MESSAGEID, Configuration
from loccorr.draw import C_B, C_G, C_R, draw_pattern, xcross_pattern
from loccorr.imagefile import (
    Image,
    ImageError,
    bin_to_labels,
    calc_background,
    equalize,
    image_to_bin,
    linear,
    write_jpg,
)
from loccorr.labeling import Box, cclabel4, component_boxes
from loccorr.morphology import dilation_n, erosion_n

log = logging.getLogger(__name__)

# Averaged positions with a larger spread (in pixels) are not used for corrections.
XY_TOLERANCE = 5.0


@dataclass(frozen=True)
class StarObject:
    """Measured parameters of one detected star image."""

    area: int
    isum: float
    wdivh: float
    xc: float
    yc: float
    xsigma: float
    ysigma: float


def _sqrt(value: float) -> float:
    return math.sqrt(max(value, 0.0))


def measure_objects(image: Image, labels, boxes: Sequence[Box], background,
                    conf: Configuration) -> list[StarObject]:
    """Measure intensity-weighted centroids of the labelled objects.

    ``boxes[k]`` describes label ``k + 1``. Objects whose width/height ratio or
    area fall outside the configured ranges are skipped; only pixels not darker
    than ``background`` contribute.
    """
    labels = np.asarray(labels)
    data = image.data.astype(np.float64) - float(background)
    found: list[StarObject] = []
    for label, box in enumerate(boxes, start=1):
        if not box.area:
            continue
        dx = box.xmax - box.xmin
        dy = box.ymax - box.ymin
        if dy:
            wh = dx / dy
        else:
            wh = math.inf if dx else math.nan
        if wh < conf.minwh or wh > conf.maxwh:
            continue
        if box.area < conf.minarea or box.area > conf.maxarea:
            continue
        rows = slice(box.ymin, box.ymax + 1)
        cols = slice(box.xmin, box.xmax + 1)
        intens = data[rows, cols]
        selected = (labels[rows, cols] == label) & (intens >= 0.0)
        ys, xs = np.nonzero(selected)
        xs = xs.astype(np.float64) + box.xmin
        ys = ys.astype(np.float64) + box.ymin
        weights = intens[selected]
        isum = float(weights.sum())
        if isum > 0.0:
            xc = float(np.dot(xs, weights)) / isum
            yc = float(np.dot(ys, weights)) / isum
            x2c = float(np.dot(xs * xs, weights)) / isum - xc * xc
            y2c = float(np.dot(ys * ys, weights)) / isum - yc * yc
        else:
            xc = yc = x2c = y2c = math.nan
        found.append(StarObject(area=box.area, isum=isum, wdivh=wh, xc=xc, yc=yc,
                                xsigma=_sqrt(x2c), ysigma=_sqrt(y2c)))
    return found


def sort_objects(objects: Sequence[StarObject], conf: Configuration) -> list[StarObject]:
    """Order objects by distance from the target, or by intensity when ``conf.starssort``.

    In intensity mode objects whose relative intensity difference does not
    exceed ``conf.intensthres`` are ordered by distance from the origin.
    """
    objects = list(objects)
    if len(objects) < 2:
        return objects
    if conf.starssort:
        def compare(a: StarObject, b: StarObject) -> int:
            total = a.isum + b.isum
            idiff = (a.isum - b.isum) / total if total else math.nan
            if abs(idiff) > conf.intensthres:
                return -1 if idiff > 0 else 1
            r2a = a.xc * a.xc + a.yc * a.yc
            r2b = b.xc * b.xc + b.yc * b.yc
            return -1 if r2a < r2b else 1
    else:
        xtg = conf.xtarget - conf.xoff
        ytg = conf.ytarget - conf.yoff

        def compare(a: StarObject, b: StarObject) -> int:
            r2a = (a.xc - xtg) ** 2 + (a.yc - ytg) ** 2
            r2b = (b.xc - xtg) ** 2 + (b.yc - ytg) ** 2
            return -1 if r2a < r2b else 1
    return sorted(objects, key=functools.cmp_to_key(compare))


class Averager:
    """Collects centroid positions and averages every ``naverage`` of them."""

    def __init__(self, naverage: int = 1) -> None:
        self.naverage = naverage
        self._xs: list[float] = []
        self._ys: list[float] = []

    def __len__(self) -> int:
        return len(self._xs)

    def add(self, x: float, y: float) -> tuple[float, float, float, float] | None:
        """Add a position; once enough are collected return ``(x, y, sx, sy)`` and restart."""
        self._xs.append(float(x))
        self._ys.append(float(y))
        count = len(self._xs)
        if count < self.naverage:
            return None
        mx = sum(self._xs) / count
        my = sum(self._ys) / count
        sx = _sqrt(sum(v * v for v in self._xs) / count - mx * mx)
        sy = _sqrt(sum(v * v for v in self._ys) / count - my * my)
        self._xs.clear()
        self._ys.clear()
        return mx, my, sx, sy


def _draw(pixels: np.ndarray, pattern: np.ndarray, x: float, y: float, color) -> None:
    if math.isfinite(x) and math.isfinite(y):
        draw_pattern(pixels, pattern, x, y, color)


class Processor:
    """Processes incoming frames: finds stars, logs and averages positions, saves a preview."""

    def __init__(self, conf: Configuration | None = None, output="loccorr.jpg",
                 corrector: Callable[[float, float], object] | None = None) -> None:
        self.conf = conf if conf is not None else Configuration()
        self.output = Path(output)
        self.corrector = corrector
        self.averager = Averager(self.conf.naverage)
        self.image_count = 0
        self.fps = 0.0
        self.center: tuple[float, float] = (-1.0, -1.0)
        self._last = 0.0
        self._xylog = None
        self._cross = xcross_pattern(33, 33)
        self._cross_large = xcross_pattern(51, 51)

    def __enter__(self) -> Processor:
        return self

    def __exit__(self, *exc) -> None:
        self.close_xylog()

    def process_image(self, image: Image | None) -> list[StarObject]:
        """Process one frame; return the detected stars, best candidate first."""
        if image is None:
            log.warning("No image")
            return []
        conf = self.conf
        objects: list[StarObject] = []
        fixed = conf.fixedbkgval if conf.fixedbkg else 0
        try:
            background = calc_background(image, fixed)
        except ImageError as exc:
            log.warning("%s", exc)
            write_jpg(image, self.output, conf.equalize, conf.throwpart)
        else:
            objects = self._detect(image, background)
        self._tick()
        return objects

    def _detect(self, image: Image, background: int) -> list[StarObject]:
        conf = self.conf
        width, height = image.width, image.height
        try:
            packed = image_to_bin(image, background)
        except ValueError as exc:
            log.warning("%s", exc)
            return []
        eroded = erosion_n(packed, width, height, conf.Nerosions)
        opened = dilation_n(eroded, width, height, conf.Ndilations)
        labels, nobj = cclabel4(bin_to_labels(opened, width, height))
        if nobj < 1:
            self.center = (-1.0, -1.0)
            write_jpg(image, self.output, conf.equalize, conf.throwpart)
            return []
        boxes = component_boxes(labels, nobj)
        objects = sort_objects(measure_objects(image, labels, boxes, background, conf), conf)
        log.debug("T%.2f, N=%d", time.time(), len(objects))
        if objects:
            self._deviation(objects[0])
        self._save_marked(image, objects)
        return objects

    def _deviation(self, obj: StarObject) -> None:
        self.averager.naverage = self.conf.naverage
        record = "\t".join(f"{v:.1f}" for v in (obj.xc, obj.yc, obj.xsigma, obj.ysigma, obj.wdivh))
        record = f"{time.time():.2f}\t{record}\t"
        average = self.averager.add(obj.xc, obj.yc)
        if average is not None:
            xx, yy, sx, sy = average
            log.debug("Average centroid: X=%.1f (+-%.1f), Y=%.1f (+-%.1f)", xx, sx, yy, sy)
            record += f"{xx:.1f}\t{yy:.1f}\t{sx:.1f}\t{sy:.1f}"
            if sx > XY_TOLERANCE or sy > XY_TOLERANCE:
                log.debug("Bad value - not process")
            elif self.corrector is None:
                log.error("Lost connection with stepper server")
            else:
                self.corrector(xx, yy)
        if self._xylog is not None:
            self._xylog.write(record + "\n")
            self._xylog.flush()

    def _save_marked(self, image: Image, objects: list[StarObject]) -> None:
        conf = self.conf
        height = image.height
        if conf.equalize:
            pixels = equalize(image, 3, conf.throwpart)
        else:
            pixels = linear(image, 3)
        _draw(pixels, self._cross_large, conf.xtarget - conf.xoff,
              height - (conf.ytarget - conf.yoff), C_R)
        if objects:
            first = objects[0]
            _draw(pixels, self._cross, first.xc, height - first.yc, C_G)
            self.center = (first.xc + conf.xoff, first.yc + conf.yoff)
            for obj in objects[1:]:
                _draw(pixels, self._cross, obj.xc, height - obj.yc, C_B)
        else:
            self.center = (-1.0, -1.0)
        tmp = self.output.with_name(self.output.name + "-tmp")
        try:
            PILImage.fromarray(pixels).save(tmp, format="JPEG", quality=95)
            os.replace(tmp, self.output)
        except OSError as exc:
            log.warning("can't save %s: %s", self.output, exc)

    def _tick(self) -> None:
        self.image_count += 1
        now = time.time()
        if self._last > 1.0 and now > self._last:
            self.fps = 1.0 / (now - self._last)
        self._last = now

    def open_xylog(self, path) -> bool:
        """Start appending per-frame positions to ``path``; return False if it can't be opened."""
        self.close_xylog()
        try:
            stream = open(path, "a", encoding="utf-8")
        except OSError as exc:
            log.error("Can't create file %s: %s", path, exc)
            return False
        stream.write(f"# Start at: {time.ctime()}\n")
        stream.write("# time Xc\tYc\t\tSx\tSy\tW/H\taverX\taverY\tSX\tSY\n")
        stream.flush()
        self._xylog = stream
        return True

    def close_xylog(self) -> None:
        """Stop logging positions."""
        if self._xylog is not None:
            self._xylog.close()
            self._xylog = None

    def image_data(self, messageid: str, isdir: bool = False) -> str:
        """Return status of the watched input and the last star centre as a JSON-like line."""
        impath = os.path.realpath(self.output)
        kind = "directory" if isdir else "file"
        xc, yc = self.center
        return (f'{{ "{MESSAGEID}": "{messageid}", "camstatus": "watch {kind}", '
                f'"impath": "{impath}", "xcenter": {xc:.1f}, "ycenter": {yc:.1f} }}')
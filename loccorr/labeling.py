"""Connected-component labelling of binary masks."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class Box:
    """Bounding box (inclusive) and pixel count of one component."""

    xmin: int
    xmax: int
    ymin: int
    ymax: int
    area: int


def _as_mask(mask) -> np.ndarray:
    arr = np.asarray(mask)
    if arr.ndim != 2:
        raise ValueError("mask should be two-dimensional")
    return arr != 0


def _runs(row: np.ndarray) -> list[tuple[int, int]]:
    padded = np.concatenate(([0], row.astype(np.int8), [0]))
    step = np.diff(padded)
    return list(zip(np.flatnonzero(step == 1).tolist(), np.flatnonzero(step == -1).tolist()))


def cclabel4(mask) -> tuple[np.ndarray, int]:
    """Label 4-connected components.

    Components are numbered 1..N in the raster order of their first pixel.
    Returns the label image and N.
    """
    fg = _as_mask(mask)
    parent: list[int] = []

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            # the larger mark always points to the smaller one
            parent[max(ra, rb)] = min(ra, rb)

    all_runs: list[tuple[int, int, int, int]] = []
    prev: list[tuple[int, int, int]] = []
    for y, row in enumerate(fg):
        current = []
        j = 0
        for start, end in _runs(row):
            run_id = len(parent)
            parent.append(run_id)
            while j < len(prev) and prev[j][1] <= start:
                j += 1
            for pstart, _pend, pid in prev[j:]:
                if pstart >= end:
                    break
                union(run_id, pid)
            current.append((start, end, run_id))
            all_runs.append((y, start, end, run_id))
        prev = current

    labels = np.zeros(fg.shape, dtype=np.int64)
    final: dict[int, int] = {}
    for y, start, end, run_id in all_runs:
        root = find(run_id)
        labels[y, start:end] = final.setdefault(root, len(final) + 1)
    return labels, len(final)


class _Marks:
    """Table of provisional marks mapped onto compact object numbers."""

    def __init__(self) -> None:
        self.assoc = [0]
        self.count = 0

    def new(self) -> int:
        self.count += 1
        self.assoc.append(self.count)
        return len(self.assoc) - 1

    def remark(self, old: int, new: int) -> None:
        high, low = self.assoc[old], self.assoc[new]
        if high == low:
            return
        if high < low:
            high, low = low, high
        self.count -= 1
        self.assoc = [m if m < high else (low if m == high else m - 1) for m in self.assoc]


def cclabel_merge(mask, eight) -> tuple[np.ndarray, int]:
    """Single-pass labelling with on-the-fly merging of object numbers.

    Isolated pixels are dropped. With ``eight`` true diagonal neighbours join
    objects. Returns the label image (objects numbered 1..N) and N.
    """
    fg = _as_mask(mask)
    height, width = fg.shape
    h, w = height - 1, width - 1
    lab = fg.astype(np.int64).tolist()
    marks = _Marks()

    for y in range(height):
        line = lab[y]
        up = lab[y - 1] if y else None
        down = lab[y + 1] if y < h else None
        found = False
        curmark = 0
        for x in range(width):
            if not line[x]:
                found = False
                continue
            if found:
                if up is not None and x < w and up[x + 1]:
                    marks.remark(up[x + 1], curmark)
                line[x] = curmark
                continue
            found = True
            upmark = 0
            if up is not None:
                if eight and x and up[x - 1]:
                    upmark = up[x - 1]
                elif up[x]:
                    upmark = up[x]
                if eight and x < w and up[x + 1]:
                    if upmark:
                        marks.remark(up[x + 1], upmark)
                    else:
                        upmark = up[x + 1]
            if not upmark:
                if eight:
                    left = bool(x and down is not None and down[x - 1])
                    right = x < w and bool((down is not None and down[x + 1]) or line[x + 1])
                    below = down is not None and bool(down[x])
                    hermit = not left and not right and not below
                else:
                    hermit = (down is not None and down[x] == 0) and (x < w and line[x + 1] == 0)
                if hermit:
                    line[x] = 0
                    continue
                upmark = marks.new()
            line[x] = upmark
            curmark = upmark

    assoc = np.asarray(marks.assoc, dtype=np.int64)
    return assoc[np.asarray(lab, dtype=np.int64)], marks.count


def component_boxes(labels, nobj) -> list[Box]:
    """Return boxes of labels 1..nobj; element ``k`` describes label ``k + 1``."""
    labels = np.asarray(labels)
    ys, xs = np.nonzero(labels)
    ids = labels[ys, xs].astype(np.intp)
    if ids.size and (ids.max() > nobj or ids.min() < 0):
        raise ValueError("label out of range")
    n = int(nobj) + 1
    area = np.bincount(ids, minlength=n)
    big = np.iinfo(np.intp).max
    xmin = np.full(n, big, dtype=np.intp)
    ymin = np.full(n, big, dtype=np.intp)
    xmax = np.full(n, -1, dtype=np.intp)
    ymax = np.full(n, -1, dtype=np.intp)
    np.minimum.at(xmin, ids, xs)
    np.minimum.at(ymin, ids, ys)
    np.maximum.at(xmax, ids, xs)
    np.maximum.at(ymax, ids, ys)
    return [
        Box(int(x0), int(x1), int(y0), int(y1), int(a)) if a else Box(0, 0, 0, 0, 0)
        for x0, x1, y0, y1, a in zip(xmin[1:], xmax[1:], ymin[1:], ymax[1:], area[1:])
    ]
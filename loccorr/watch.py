"""Watching a file or a directory for newly written images."""

from __future__ import annotations

import logging
import os
import stat
import time
from typing import Callable

from loccorr.imagefile import Image, read_image

log = logging.getLogger(__name__)

Snapshot = dict[str, tuple[int, int]]


def _should_stop(stop) -> bool:
    if stop is None:
        return False
    is_set = getattr(stop, "is_set", None)
    if is_set is not None:
        return bool(is_set())
    return bool(stop())


def _signature(st: os.stat_result) -> tuple[int, int]:
    return (st.st_mtime_ns, st.st_size)


def _scan_file(path: str) -> Snapshot | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    return {path: _signature(st)}


def _scan_directory(path: str) -> Snapshot | None:
    try:
        with os.scandir(path) as entries:
            result: Snapshot = {}
            for entry in entries:
                try:
                    if entry.is_file():
                        result[entry.path] = _signature(entry.stat())
                except OSError:
                    continue
            return result
    except OSError:
        return None


def _process_one(path: str, process: Callable[[Image], object]) -> bool:
    try:
        image = read_image(path)
    except (ValueError, OSError) as exc:
        log.warning("Can't read %s: %s", path, exc)
        return False
    process(image)
    return True


def _run(scan: Callable[[], Snapshot | None], process, stop, interval: float) -> int:
    """Poll ``scan`` and hand every file that changed and then settled to ``process``."""
    seen = scan()
    pending: Snapshot = {}
    processed = 0
    while not _should_stop(stop):
        time.sleep(interval)
        current = scan()
        if current is None:
            seen = None
            pending = {}
            continue
        if seen is None:
            seen = current
            continue
        ready = sorted(path for path, sig in pending.items() if current.get(path) == sig)
        pending = {path: sig for path, sig in current.items() if seen.get(path) != sig}
        seen = current
        for path in ready:
            if _process_one(path, process):
                processed += 1
            if _should_stop(stop):
                break
    return processed


def watch_file(name, process: Callable[[Image], object], stop=None,
               interval: float = 0.1) -> int:
    """Call ``process`` with the image each time the file ``name`` is rewritten.

    Runs until ``stop`` (an event or a callable) is set; returns the number of
    images processed. A removed file is waited for and watched again.
    """
    if not name:
        raise ValueError("Need filename")
    path = os.fspath(name)
    return _run(lambda: _scan_file(path), process, stop, interval)


def watch_directory(name, process: Callable[[Image], object], stop=None,
                    interval: float = 0.1) -> int:
    """Call ``process`` with every image written into the directory ``name``.

    Files present when watching starts are not processed. Runs until ``stop``
    is set; returns the number of images processed.
    """
    if not name:
        raise ValueError("Need directory name")
    path = os.fspath(name)
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return _run(lambda: _scan_directory(path), process, stop, interval)
import threading
import time

import numpy as np
import pytest
from PIL import Image as PILImage

from loccorr.watch import watch_directory, watch_file


def _save_png(path, array):
    PILImage.fromarray(np.asarray(array, dtype=np.uint8)).save(path, format="PNG")


def _start(run, images, stop):
    """Run ``run(process)`` in a thread; ``process`` records the image and stops."""
    result = {}

    def process(image):
        images.append(image)
        stop.set()

    def body():
        result["count"] = run(process)

    thread = threading.Thread(target=body, daemon=True)
    thread.start()
    time.sleep(0.2)
    return thread, result


def test_directory_new_image_processed(tmp_path):
    images, stop = [], threading.Event()
    thread, result = _start(
        lambda process: watch_directory(tmp_path, process, stop, 0.01), images, stop
    )
    array = np.arange(12, dtype=np.uint8).reshape(3, 4) * 10
    _save_png(tmp_path / "frame.png", array)
    thread.join(5)
    stop.set()
    assert not thread.is_alive()
    assert result["count"] == 1
    assert np.array_equal(images[0].data, array[::-1])


def test_directory_skips_unreadable(tmp_path):
    images, stop = [], threading.Event()
    watched = str(tmp_path) + "/"
    thread, result = _start(
        lambda process: watch_directory(watched, process, stop, 0.01), images, stop
    )
    (tmp_path / "a.txt").write_text("this is not an image at all")
    array = np.full((2, 5), 77, dtype=np.uint8)
    _save_png(tmp_path / "b.png", array)
    thread.join(5)
    stop.set()
    assert not thread.is_alive()
    assert len(images) == 1
    assert np.array_equal(images[0].data, array)


def test_existing_files_are_not_processed(tmp_path):
    _save_png(tmp_path / "old.png", np.zeros((2, 2)))
    images = []
    calls = {"n": 0}

    def stop():
        calls["n"] += 1
        return calls["n"] > 10

    count = watch_directory(tmp_path, images.append, stop, 0.01)
    assert count == 0
    assert images == []


def test_file_rewrite_processed(tmp_path):
    target = tmp_path / "image.png"
    _save_png(target, np.zeros((2, 2)))
    images, stop = [], threading.Event()
    thread, result = _start(
        lambda process: watch_file(target, process, stop, 0.01), images, stop
    )
    array = np.arange(20, dtype=np.uint8).reshape(4, 5) * 12
    _save_png(target, array)
    thread.join(5)
    stop.set()
    assert not thread.is_alive()
    assert result["count"] == 1
    assert np.array_equal(images[0].data, array[::-1])


def test_directory_appearing_later(tmp_path):
    watched = tmp_path / "later"
    images, stop = [], threading.Event()
    thread, result = _start(
        lambda process: watch_directory(watched, process, stop, 0.01), images, stop
    )
    watched.mkdir()
    time.sleep(0.2)
    array = np.full((3, 3), 5, dtype=np.uint8)
    _save_png(watched / "x.png", array)
    thread.join(5)
    stop.set()
    assert not thread.is_alive()
    assert result["count"] == 1
    assert np.array_equal(images[0].data, array)


def test_stopped_watch_returns_immediately(tmp_path):
    stop = threading.Event()
    stop.set()
    images = []
    assert watch_directory(tmp_path, images.append, stop) == 0
    assert images == []


@pytest.mark.parametrize("func", [watch_file, watch_directory])
def test_empty_name_rejected(func):
    with pytest.raises(ValueError):
        func("", lambda image: None)
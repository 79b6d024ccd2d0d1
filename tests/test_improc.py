import statistics

import numpy as np
import pytest
from PIL import Image as PILImage

from loccorr.config import Configuration
from loccorr.imagefile import Image
from loccorr.improc import (
    Averager,
    Processor,
    StarObject,
    measure_objects,
    sort_objects,
)
from loccorr.labeling import cclabel4, component_boxes


def _frame(stars, size=64, level=10, value=200):
    data = np.full((size, size), level, dtype=np.uint8)
    for x, y in stars:
        data[y - 2:y + 3, x - 2:x + 3] = value
    return Image(data)


def _star(isum, xc, yc):
    return StarObject(area=10, isum=isum, wdivh=1.0, xc=xc, yc=yc, xsigma=1.0, ysigma=1.0)


def test_single_star_detected(tmp_path):
    out = tmp_path / "out.jpg"
    proc = Processor(Configuration(), out)
    objects = proc.process_image(_frame([(22, 32)]))
    assert len(objects) == 1
    assert objects[0].xc == pytest.approx(22.0)
    assert objects[0].yc == pytest.approx(32.0)
    assert proc.center == pytest.approx((22.0, 32.0))
    assert proc.image_count == 1
    with PILImage.open(out) as pic:
        assert pic.size == (64, 64)
        assert pic.format == "JPEG"


def test_center_includes_offset(tmp_path):
    conf = Configuration(xoff=100, yoff=50)
    proc = Processor(conf, tmp_path / "out.jpg")
    proc.process_image(_frame([(22, 32)]))
    assert proc.center == pytest.approx((122.0, 82.0))


def test_flat_image_written_without_objects(tmp_path):
    out = tmp_path / "flat.jpg"
    proc = Processor(Configuration(), out)
    result = proc.process_image(Image(np.full((16, 16), 50, dtype=np.uint8)))
    assert result == []
    assert proc.center == (-1.0, -1.0)
    assert proc.image_count == 1
    assert out.exists()


def test_none_image_is_ignored(tmp_path):
    proc = Processor(Configuration(), tmp_path / "out.jpg")
    assert proc.process_image(None) == []
    assert proc.image_count == 0


@pytest.mark.parametrize("target, expected", [((47.0, 47.0), 48.0), ((15.0, 15.0), 16.0)])
def test_nearest_to_target_first(tmp_path, target, expected):
    conf = Configuration(xtarget=target[0], ytarget=target[1], equalize=0)
    proc = Processor(conf, tmp_path / "out.jpg")
    objects = proc.process_image(_frame([(16, 16), (48, 48)]))
    assert len(objects) == 2
    assert objects[0].xc == pytest.approx(expected)
    assert proc.center[0] == pytest.approx(expected)


def test_sort_by_intensity():
    conf = Configuration(starssort=1)
    dim, bright = _star(100.0, 1.0, 1.0), _star(1000.0, 50.0, 50.0)
    assert sort_objects([dim, bright], conf) == [bright, dim]


def test_sort_similar_intensity_by_radius():
    conf = Configuration(starssort=1, intensthres=0.5)
    far, near = _star(100.0, 40.0, 40.0), _star(101.0, 3.0, 4.0)
    assert sort_objects([far, near], conf) == [near, far]


def test_sort_by_distance_from_target():
    conf = Configuration(xtarget=40.0, ytarget=40.0)
    a, b = _star(1.0, 0.0, 0.0), _star(1.0, 39.0, 41.0)
    assert sort_objects([a, b], conf)[0] is b


def test_measure_objects_filters_area():
    mask = np.zeros((20, 20), dtype=np.uint8)
    mask[2:7, 2:7] = 1
    mask[12:14, 12:14] = 1
    labels, nobj = cclabel4(mask)
    boxes = component_boxes(labels, nobj)
    image = Image(mask * 100 + 5)
    found = measure_objects(image, labels, boxes, 5, Configuration(minarea=5))
    assert [obj.area for obj in found] == [25]
    assert found[0].xc == pytest.approx(4.0)
    assert measure_objects(image, labels, boxes, 5, Configuration(maxarea=10)) == [
        obj for obj in measure_objects(image, labels, boxes, 5, Configuration(maxarea=10))
        if obj.area <= 10
    ]
    assert all(obj.area <= 10 for obj in
               measure_objects(image, labels, boxes, 5, Configuration(maxarea=10)))


def test_averager_mean_and_sigma():
    avg = Averager(3)
    assert avg.add(1.0, 10.0) is None
    assert avg.add(2.0, 10.0) is None
    x, y, sx, sy = avg.add(3.0, 10.0)
    assert x == pytest.approx(statistics.fmean([1.0, 2.0, 3.0]))
    assert y == pytest.approx(10.0)
    assert sx == pytest.approx(statistics.pstdev([1.0, 2.0, 3.0]))
    assert sy == pytest.approx(0.0)
    assert len(avg) == 0


def test_corrector_called_with_average(tmp_path):
    calls = []
    proc = Processor(Configuration(), tmp_path / "out.jpg",
                     corrector=lambda x, y: calls.append((x, y)))
    proc.process_image(_frame([(22, 32)]))
    assert calls == [pytest.approx((22.0, 32.0))]


def test_scattered_positions_not_corrected(tmp_path):
    calls = []
    proc = Processor(Configuration(naverage=2), tmp_path / "out.jpg",
                     corrector=lambda x, y: calls.append((x, y)))
    proc.process_image(_frame([(22, 32)]))
    proc.process_image(_frame([(40, 32)]))
    assert calls == []
    proc.process_image(_frame([(22, 32)]))
    proc.process_image(_frame([(22, 32)]))
    assert calls == [pytest.approx((22.0, 32.0))]


def test_xylog_records(tmp_path):
    logpath = tmp_path / "xy.log"
    with Processor(Configuration(), tmp_path / "out.jpg") as proc:
        assert proc.open_xylog(logpath) is True
        proc.process_image(_frame([(22, 32)]))
    lines = logpath.read_text().splitlines()
    assert lines[0].startswith("# Start at:")
    assert lines[1] == "# time Xc\tYc\t\tSx\tSy\tW/H\taverX\taverY\tSX\tSY"
    fields = lines[-1].split("\t")
    assert len(fields) == 10
    assert fields[1] == "22.0"
    assert fields[2] == "32.0"


def test_xylog_open_failure(tmp_path):
    proc = Processor(Configuration(), tmp_path / "out.jpg")
    assert proc.open_xylog(tmp_path / "missing" / "xy.log") is False


def test_image_data(tmp_path):
    proc = Processor(Configuration(), tmp_path / "out.jpg")
    text = proc.image_data("abc", True)
    assert '"messageid": "abc"' in text
    assert '"camstatus": "watch directory"' in text
    assert '"xcenter": -1.0' in text
    proc.process_image(_frame([(22, 32)]))
    text = proc.image_data("abc")
    assert '"camstatus": "watch file"' in text
    assert '"xcenter": 22.0' in text
    assert '"ycenter": 32.0' in text
# loccorr

Tools for locating a star image on a camera frame and keeping it on a
target position.

`Processor.process_image` handles each frame the same way:

1. the background level is estimated from the image histogram (or a fixed
   level is used when the configuration asks for one);
2. the image is binarised against that level and packed eight pixels to a
   byte;
3. the configured number of erosions and then dilations removes noise and
   single hot pixels;
4. four-connected components are labelled and their bounding boxes
   collected;
5. components are filtered by area and by width/height roundness, their
   intensity-weighted centroids and spreads are measured, and they are
   sorted either by distance from the target or by brightness;
6. the first object's position is averaged over `naverage` frames; when the
   spread of the average is small enough, the mean position is handed to the
   `corrector` callable given to the `Processor`;
7. a preview JPEG is written with crosses drawn on the target (red), the
   chosen object (green) and every other detected object (blue).

## Modules

- `loccorr.config` – the run-time configuration (`Configuration`) with
  range-checked parameters (`check_keyval`, `set`), `key = value` file
  loading and saving (`load`, `save`), a JSON-like listing of the current
  settings (`listconf`), the parameter help text (`get_cmd_list`) and the
  line splitter `get_keyval`. Bad values raise `ConfigError`.
- `loccorr.fits` – reading two-dimensional, optionally gzipped FITS images
  (`read_fits`) and scaling pixel data linearly onto 0..255 (`float_to_u8`).
  Unsupported files raise `FitsError`.
- `loccorr.imagefile` – the `Image` container, input type detection by file
  signature (`chkinput`, `InputType`), loading of FITS, PNG, JPEG, GIF and
  BMP files (`read_image`), histograms (`get_histogram`), background
  estimation (`calc_background`), linear and histogram-equalised previews
  (`linear`, `equalize`, `write_jpg`) and conversion to and from packed
  binary images (`image_to_bin`, `bin_to_image`, `bin_to_labels`).
- `loccorr.morphology` – erosion and dilation of packed binary images
  (`erosion`, `erosion_n`, `dilation`, `dilation_n`) and `filter4`, which
  removes pixels without a four-connected neighbour.
- `loccorr.labeling` – four-connected component labelling (`cclabel4`), a
  single-pass labelling that merges objects on the fly and drops isolated
  pixels, with optional eight-connectivity (`cclabel_merge`), and bounding
  boxes of labelled components (`component_boxes`, `Box`).
- `loccorr.median` – the median of a set of values (`calc_median`), a
  running median over a window (`Mediator`), median filtering of an image
  (`get_median`) and local mean/deviation maps (`get_stat`).
- `loccorr.draw` – cross-shaped opacity patterns (`cross_pattern`,
  `xcross_pattern`) and their blending onto three-channel images
  (`draw_pattern`).
- `loccorr.improc` – the per-frame pipeline (`Processor`), object
  measurement and sorting (`measure_objects`, `sort_objects`,
  `StarObject`), frame averaging (`Averager`), the optional XY log
  (`open_xylog`, `close_xylog`) and a status line (`image_data`).
- `loccorr.watch` – polling a file (`watch_file`) or a directory
  (`watch_directory`) for newly written images and passing each one to a
  callback until a stop event is set.
- `loccorr.server` – a line-based TCP command server on the loopback
  interface (`CommandServer`) and its command parser (`CommandProcessor`),
  accepting `name=value` settings, queries such as `help`, `settings`,
  `stpserv` and `imdata`, and the stepper commands `stpstate=`, `focus=`,
  `moveU=` and `moveV=`, which are passed to an optional steppers object.

## Example

```python
import threading

from loccorr.config import Configuration
from loccorr.improc import Processor
from loccorr.imagefile import read_image
from loccorr.server import CommandProcessor, CommandServer
from loccorr.watch import watch_directory

conf = Configuration()
conf.set("minarea", "10")
conf.set("xtarget", "512")
conf.set("ytarget", "512")
print(conf.listconf("example"))

image = read_image("frame.fits")
print(image.width, image.height)

processor = Processor(conf, output="preview.jpg",
                      corrector=lambda x, y: print("move to", x, y))
stars = processor.process_image(image)
print(stars[:1], processor.center)

with CommandServer(CommandProcessor(conf, imagedata=processor.image_data)) as server:
    print("commands on", server.address)
    stop = threading.Event()
    watch_directory("frames", processor.process_image, stop=stop)
```

A configuration file holds one `name = value` pair per line; lines starting
with `#` or `%` are comments. Values outside a parameter's allowed range are
logged and skipped, and `Configuration.load` returns `False` when a
parameter appears more than once.

## What it does not do

- It does not capture frames from cameras: `chkinput` recognises the name
  `grasshopper`, but `read_image` cannot read from it; frames come from
  files or from your own code.
- It does not talk to stepper motors: corrections go to the `corrector`
  callable, and stepper commands on the server go to whatever steppers
  object you supply (methods `step_status`, `set_step_status`,
  `move_focus`, `move_u`, `move_v`); without one they answer `FAILED`.
- It has no command-line program; the pieces above are wired together in
  Python.
"""Run-time configuration: parameter table, key/value parsing, load and save."""

from __future__ import annotations

import enum
import logging
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

# Ranges of configuration values.
MAXSTEPS = 50000
FMAXSTEPS = 64000
COEFMIN = 0.1
COEFMAX = 10000
MINAREA = 4
MAXAREA = 2500000
MAX_NDILAT = 100
MAX_NEROS = 100
MAX_THROWPART = 0.9
MAX_OFFSET = 10000
EXPOS_MIN = 0.1
EXPOS_MAX = 4001.0
GAIN_MIN = 0.0
GAIN_MAX = 100.0
BRIGHT_MIN = 0.0
BRIGHT_MAX = 10.0
NAVER_MAX = 25
KUVMIN = -5000.0
KUVMAX = 5000.0
KCORR = 0.90
MIN_MEDIAN_SEED = 1
MAX_MEDIAN_SEED = 7
FIXED_BK_MIN = 0
FIXED_BK_MAX = 250
EXPAUTO = 0
EXPMANUAL = 1
MINWH = 0.3
MAXWH = 3.0
MESSAGEID = "messageid"

# Start-up defaults (the command line usually overrides these).
DEFAULT_MAXUSTEPS = MAXSTEPS
DEFAULT_MAXVSTEPS = MAXSTEPS
DEFAULT_MINAREA = MINAREA
DEFAULT_MAXAREA = MAXAREA
DEFAULT_NEROSIONS = 1
DEFAULT_NDILATIONS = 1
DEFAULT_NAVERAGE = 1
DEFAULT_STEPPERSPORT = 4444
DEFAULT_THROWPART = 0.5
DEFAULT_INTENSTHRES = 0.01

_FIELD_LIMIT = 127


class ConfigError(ValueError):
    """A configuration key or value is unknown, malformed or out of range."""


class ParamType(enum.Enum):
    INT = "int"
    DOUBLE = "double"


@dataclass(frozen=True)
class ConfParam:
    """Description of one user-settable parameter."""

    name: str
    attr: str
    type: ParamType
    minval: float
    maxval: float
    help: str


_I, _D = ParamType.INT, ParamType.DOUBLE

PARAMS: tuple[ConfParam, ...] = (
    ConfParam("maxarea", "maxarea", _I, MINAREA, MAXAREA,
              "maximal area (in square pixels) of recognized star image"),
    ConfParam("minarea", "minarea", _I, MINAREA, MAXAREA,
              "minimal area (in square pixels) of recognized star image"),
    ConfParam("minwh", "minwh", _D, MINWH, 1.0, "minimal value of W/H roundness parameter"),
    ConfParam("maxwh", "maxwh", _D, 1.0, MAXWH, "maximal value of W/H roundness parameter"),
    ConfParam("ndilat", "Ndilations", _I, 1.0, MAX_NDILAT, "amount of dilations on binarized image"),
    ConfParam("neros", "Nerosions", _I, 1.0, MAX_NEROS, "amount of erosions after dilations"),
    ConfParam("xoffset", "xoff", _I, 0.0, MAX_OFFSET, "X offset of subimage"),
    ConfParam("yoffset", "yoff", _I, 0.0, MAX_OFFSET, "Y offset of subimage"),
    ConfParam("width", "width", _I, 0.0, MAX_OFFSET, "subimage width"),
    ConfParam("height", "height", _I, 0.0, MAX_OFFSET, "subimage height"),
    ConfParam("equalize", "equalize", _I, 0.0, 1.0, "make histogram equalization"),
    ConfParam("expmethod", "expmethod", _I, 0.0, 1.0, "exposition method: 0 - auto, 1 - fixed"),
    ConfParam("naverage", "naverage", _I, 1.0, NAVER_MAX, "calculate mean position by N images"),
    ConfParam("umax", "maxUpos", _I, -MAXSTEPS, MAXSTEPS, "maximal value of steps on U semi-axe"),
    ConfParam("umin", "minUpos", _I, -MAXSTEPS, MAXSTEPS, "minimal value of steps on U semi-axe"),
    ConfParam("vmax", "maxVpos", _I, -MAXSTEPS, MAXSTEPS, "maximal value of steps on V semi-axe"),
    ConfParam("vmin", "minVpos", _I, -MAXSTEPS, MAXSTEPS, "minimal value of steps on V semi-axe"),
    ConfParam("focmax", "maxFpos", _I, 0.0, FMAXSTEPS, "maximal focus position in microsteps"),
    ConfParam("focmin", "minFpos", _I, -FMAXSTEPS, 0.0, "minimal focus position in microsteps"),
    ConfParam("stpservport", "stpserverport", _I, 0.0, 65535.0, "port number of steppers' server"),
    ConfParam("Kxu", "Kxu", _D, KUVMIN, KUVMAX, "dU = Kxu*dX + Kyu*dY"),
    ConfParam("Kyu", "Kyu", _D, KUVMIN, KUVMAX, "dU = Kxu*dX + Kyu*dY"),
    ConfParam("Kxv", "Kxv", _D, KUVMIN, KUVMAX, "dV = Kxv*dX + Kyv*dY"),
    ConfParam("Kyv", "Kyv", _D, KUVMIN, KUVMAX, "dV = Kxv*dX + Kyv*dY"),
    ConfParam("xtarget", "xtarget", _D, 1.0, MAX_OFFSET, "X coordinate of target position"),
    ConfParam("ytarget", "ytarget", _D, 1.0, MAX_OFFSET, "Y coordinate of target position"),
    ConfParam("eqthrowpart", "throwpart", _D, 0.0, MAX_THROWPART,
              "a part of low intensity pixels to throw away when histogram equalized"),
    ConfParam("minexp", "minexp", _D, 0.0, EXPOS_MAX, "minimal exposition time"),
    ConfParam("maxexp", "maxexp", _D, 0.0, EXPOS_MAX, "maximal exposition time"),
    ConfParam("fixedexp", "fixedexp", _D, EXPOS_MIN, EXPOS_MAX,
              "fixed (in manual mode) exposition time"),
    ConfParam("intensthres", "intensthres", _D, 0.0, 1.0,
              "threshold by total object intensity when sorting = |I1-I2|/(I1+I2)"),
    ConfParam("gain", "gain", _D, GAIN_MIN, GAIN_MAX, "gain value in manual mode"),
    ConfParam("brightness", "brightness", _D, BRIGHT_MIN, BRIGHT_MAX, "brightness value"),
    ConfParam("starssort", "starssort", _I, 0.0, 1.0,
              "stars sorting algorithm: by distance from target (0) or by intensity (1)"),
    ConfParam("medfilt", "medfilt", _I, 0.0, 1.0, "use median filter (1) or not (0)"),
    ConfParam("medseed", "medseed", _I, MIN_MEDIAN_SEED, MAX_MEDIAN_SEED, "median filter radius"),
    ConfParam("fixedbg", "fixedbkg", _I, 0.0, 1.0,
              "don't calculate background, use fixed value instead"),
    ConfParam("fbglevel", "fixedbkgval", _I, FIXED_BK_MIN, FIXED_BK_MAX, "fixed background level"),
)

_BY_NAME = {p.name: p for p in PARAMS}

_INT_MIN, _INT_MAX = -(2**31), 2**31 - 1
_INT_RE = re.compile(r"[ \t\n\r\f\v]*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


def get_cmd_list() -> str:
    """Return the help text listing every parameter with its allowed range."""
    return "".join(
        f"{p.name}=newval - {p.help} (from {p.minval:g} to {p.maxval:g})\n" for p in PARAMS
    )


def _omitspaces(text: str) -> str:
    text = text.lstrip(" \t")
    return text.split(" ", 1)[0].split("\t", 1)[0]


def get_keyval(pair: str) -> tuple[str, str] | None:
    """Split a ``key = value`` line.

    Returns ``(key, value)``; comments and empty lines give ``("#", "")``;
    a line that is neither gives ``None``.
    """
    if not pair:
        return ("#", "")
    eq = pair.find("=")
    if eq == 0:
        return ("#", "")
    value = ""
    if eq == -1 or eq > _FIELD_LIMIT:
        key = pair[:_FIELD_LIMIT]
    else:
        key = pair[:eq]
        value = pair[eq + 1:].split("\n", 1)[0][:_FIELD_LIMIT]
    key = _omitspaces(key)
    if value:
        return (key, _omitspaces(value))
    if key.startswith(("#", "%")):
        return ("#", "")
    return None


def _parse_int(text: str) -> int:
    match = _INT_RE.fullmatch(text)
    if not match:
        raise ValueError(text)
    sign, body = match.groups()
    if body[:2].lower() == "0x":
        number = int(body, 16)
    elif body.startswith("0"):
        number = int(body, 8)
    else:
        number = int(body, 10)
    if sign == "-":
        number = -number
    if not _INT_MIN <= number <= _INT_MAX:
        raise ValueError(text)
    return number


def _parse_float(text: str) -> float:
    body = text.lstrip(" \t\n\r\f\v")
    if not body or "_" in body or body != body.rstrip():
        raise ValueError(text)
    if body.lstrip("+-")[:2].lower() == "0x":
        return float.fromhex(body)
    return float(body)


@dataclass
class Configuration:
    """Current values of all tunable parameters."""

    maxUpos: int = DEFAULT_MAXUSTEPS
    minUpos: int = 0
    maxVpos: int = DEFAULT_MAXVSTEPS
    minVpos: int = 0
    maxFpos: int = FMAXSTEPS - 1
    minFpos: int = -FMAXSTEPS + 1
    minarea: int = DEFAULT_MINAREA
    maxarea: int = DEFAULT_MAXAREA
    Nerosions: int = DEFAULT_NEROSIONS
    Ndilations: int = DEFAULT_NDILATIONS
    xoff: int = 0
    yoff: int = 0
    width: int = 0
    height: int = 0
    equalize: int = 1
    naverage: int = DEFAULT_NAVERAGE
    stpserverport: int = DEFAULT_STEPPERSPORT
    starssort: int = 0
    expmethod: int = EXPAUTO
    medfilt: int = 0
    medseed: int = MIN_MEDIAN_SEED
    fixedbkg: int = 0
    fixedbkgval: int = 0
    Kxu: float = 0.0
    Kyu: float = 0.0
    Kxv: float = 0.0
    Kyv: float = 0.0
    minwh: float = 0.9
    maxwh: float = 1.1
    xtarget: float = -1.0
    ytarget: float = -1.0
    throwpart: float = DEFAULT_THROWPART
    maxexp: float = EXPOS_MAX - 1.0
    minexp: float = EXPOS_MIN
    fixedexp: float = EXPOS_MIN * 2
    gain: float = 20.0
    brightness: float = 0.0
    intensthres: float = DEFAULT_INTENSTHRES

    def __post_init__(self) -> None:
        self._path: Path | None = None

    def check_keyval(self, key: str, value: str) -> tuple[ConfParam, int | float]:
        """Validate ``value`` for parameter ``key``; return the parameter and parsed value."""
        par = _BY_NAME.get(key)
        if par is None:
            raise ConfigError(f"Unknown parameter '{key}'")
        if par.type is ParamType.INT:
            try:
                number: int | float = _parse_int(value)
            except ValueError:
                raise ConfigError(f"Wrong integer value '{value}' of parameter '{key}'") from None
            shown = f"{number}"
        else:
            try:
                number = _parse_float(value)
            except ValueError:
                raise ConfigError(f"Wrong double value '{value}' of parameter '{key}'") from None
            shown = f"{number:g}"
        if number < par.minval or number > par.maxval:
            raise ConfigError(
                f"Value ({shown}) of parameter {par.name} out of range "
                f"{par.minval:g}..{par.maxval:g}"
            )
        return par, number

    def set(self, key: str, value: str) -> int | float:
        """Parse, validate and store a parameter; return the stored value."""
        par, number = self.check_keyval(key, value)
        setattr(self, par.attr, number)
        return number

    def load(self, path: str | Path) -> bool:
        """Read ``key = value`` lines from a file.

        Invalid parameters are logged and skipped; reading stops at the first
        line that is neither a parameter, a comment nor empty text.
        Returns False if some parameter occurs more than once.
        """
        path = Path(path)
        self._path = path
        counts: Counter[str] = Counter()
        with path.open("r", encoding="utf-8", errors="surrogateescape") as stream:
            for line in stream:
                parsed = get_keyval(line)
                if parsed is None:
                    break
                key, value = parsed
                if key.startswith("#"):
                    continue
                try:
                    par, number = self.check_keyval(key, value)
                except ConfigError as exc:
                    log.warning("%s", exc)
                    log.warning("Parameter '%s' is wrong or out of range", key)
                    continue
                setattr(self, par.attr, number)
                counts[par.name] += 1
        consistent = True
        for name, count in counts.items():
            if count > 1:
                log.warning("parameter '%s' meets %d times", name, count)
                consistent = False
        return consistent

    def _format(self, par: ConfParam) -> str:
        value = getattr(self, par.attr)
        if par.type is ParamType.INT:
            return f"{int(value)}"
        return f"{float(value):.3f}"

    def save(self, path: str | Path | None = None) -> Path:
        """Write all parameters to ``path`` (or the last loaded file); return the path."""
        if path is None:
            if self._path is None:
                raise ConfigError("no conffile given")
            path = self._path
        path = Path(path)
        with path.open("w", encoding="utf-8") as stream:
            for par in PARAMS:
                stream.write(f"{par.name} = {self._format(par)}\n")
        log.debug("Configuration file '%s' saved", path)
        return path

    def listconf(self, messageid: str) -> str:
        """Return the configuration as a one-line JSON-like object."""
        items = ", ".join(f'"{par.name}": {self._format(par)}' for par in PARAMS)
        return f'{{ "{MESSAGEID}": "{messageid}", {items} }}\n'
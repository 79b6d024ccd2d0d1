"""Local TCP command server: configuration access and stepper commands."""

from __future__ import annotations

import logging
import selectors
import socket
import threading
from dataclasses import dataclass
from typing import Callable

from loccorr.config import ConfigError, Configuration, get_cmd_list, get_keyval

log = logging.getLogger(__name__)

OK = "OK\n"
FAIL = "FAILED\n"

BUFLEN = 1024
BACKLOG = 10
LIMIT_MESSAGE = "Max amount of connections reached!"


@dataclass(frozen=True)
class _Command:
    name: str
    help: str
    handler: Callable[[str], str | None]


class CommandProcessor:
    """Parses text commands and produces answers.

    ``key=value`` lines set configuration parameters; other commands are
    getters (``help``, ``settings``, ``stpserv``, ``imdata``) and setters
    (``stpstate=``, ``focus=``, ``moveU=``, ``moveV=``) forwarded to the
    optional ``steppers`` object and ``imagedata`` callable.
    """

    def __init__(self, conf: Configuration | None = None, steppers=None,
                 imagedata: Callable[[str], str] | None = None) -> None:
        self.conf = conf if conf is not None else Configuration()
        self.steppers = steppers
        self.imagedata = imagedata
        self._lock = threading.Lock()
        self._getters = (
            _Command("help", "List avaiable commands", lambda _mid: self.help()),
            _Command("settings", "List current configuration", self.conf.listconf),
            _Command("stpserv", "Get status of steppers server",
                     lambda mid: self._steppers_call("step_status", mid)),
            _Command("imdata", "Get image data (status, path, FPS, counter)",
                     self._image_data),
        )
        self._setters = (
            _Command("stpstate", "Set given steppers' server state",
                     lambda val: self._steppers_call("set_step_status", val)),
            _Command("focus", "Move focus to given value",
                     lambda val: self._steppers_call("move_focus", val)),
            _Command("moveU", "Relative moving by U axe",
                     lambda val: self._steppers_call("move_u", val)),
            _Command("moveV", "Relative moving by V axe",
                     lambda val: self._steppers_call("move_v", val)),
        )

    def _steppers_call(self, method: str, argument: str) -> str | None:
        handler = getattr(self.steppers, method, None) if self.steppers is not None else None
        if handler is None:
            return FAIL
        return handler(argument)

    def _image_data(self, messageid: str) -> str | None:
        if self.imagedata is None:
            return FAIL
        return self.imagedata(messageid)

    def help(self) -> str:
        """Return the list of all parameters and commands."""
        lines = [get_cmd_list()]
        lines.extend(f"{g.name} - {g.help}\n" for g in self._getters)
        lines.extend(f"{s.name}=newval - {s.help}\n" for s in self._setters)
        return "".join(lines)

    @staticmethod
    def _matches(msg: str, name: str) -> bool:
        return msg[:len(name)].lower() == name.lower()

    def process(self, msg: str) -> str | None:
        """Execute one command and return the answer (``None`` means no answer)."""
        with self._lock:
            parsed = get_keyval(msg)
            if parsed is not None:
                key, value = parsed
                try:
                    self.conf.set(key, value)
                except ConfigError as exc:
                    log.debug("%s", exc)
                else:
                    return OK
                for setter in self._setters:
                    if self._matches(msg, setter.name):
                        return setter.handler(value)
            else:
                for getter in self._getters:
                    if self._matches(msg, getter.name):
                        return getter.handler(getter.name)
            return FAIL


class CommandServer:
    """TCP server on the loopback interface answering commands line by line."""

    def __init__(self, processor: CommandProcessor, port: int = 0,
                 host: str = "127.0.0.1", max_clients: int = BACKLOG) -> None:
        self.processor = processor
        self.host = host
        self.port = port
        self.max_clients = max_clients
        self._listener: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        """The bound address (available after :meth:`start`)."""
        if self._listener is None:
            raise RuntimeError("server is not started")
        return self._listener.getsockname()[:2]

    def __enter__(self) -> CommandServer:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def start(self) -> tuple[str, int]:
        """Bind, listen and serve in a background thread; return the bound address."""
        if self._thread is not None:
            raise RuntimeError("server already started")
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
            listener.listen(BACKLOG)
        except OSError:
            listener.close()
            raise
        self._listener = listener
        self._stop.clear()
        self._thread = threading.Thread(target=self._serve, name="loccorr-server", daemon=True)
        self._thread.start()
        return self.address

    def stop(self) -> None:
        """Stop serving and close all connections."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    @staticmethod
    def _send(conn: socket.socket, text: str) -> None:
        if text and not text.endswith("\n"):
            text += "\n"
        try:
            conn.sendall(text.encode("utf-8"))
        except OSError as exc:
            log.error("send_data(): write() failed: %s", exc)

    def _accept(self, sel: selectors.BaseSelector, clients: set) -> None:
        try:
            conn, addr = self._listener.accept()
        except OSError as exc:
            log.error("server(): accept() failed: %s", exc)
            return
        log.info("Got connection from %s", addr[0])
        if len(clients) >= self.max_clients:
            log.warning("Max amount of connections: disconnect %s", addr[0])
            self._send(conn, LIMIT_MESSAGE)
            conn.close()
            return
        clients.add(conn)
        sel.register(conn, selectors.EVENT_READ, "client")

    def _handle(self, conn: socket.socket, sel: selectors.BaseSelector, clients: set) -> None:
        try:
            data = conn.recv(BUFLEN - 1)
        except OSError:
            data = b""
        if not data:
            sel.unregister(conn)
            clients.discard(conn)
            conn.close()
            log.info("Client disconnected")
            return
        msg = data.decode("utf-8", errors="replace")
        log.debug("user sent '%s'", msg)
        answer = self.processor.process(msg)
        if answer:
            self._send(conn, answer)

    def _serve(self) -> None:
        clients: set[socket.socket] = set()
        with selectors.DefaultSelector() as sel:
            sel.register(self._listener, selectors.EVENT_READ, None)
            try:
                while not self._stop.is_set():
                    for key, _ in sel.select(timeout=0.05):
                        if key.data is None:
                            self._accept(sel, clients)
                        else:
                            self._handle(key.fileobj, sel, clients)
            finally:
                for conn in clients:
                    conn.close()
"""
Development HTTP server for the destination tree, with live reload.
"""
from __future__ import annotations

import asyncio
import os
import pathlib
import socket
import threading

from livereload import Server
from livereload.handlers import StaticFileHandler
from tornado import web
from tornado.ioloop import IOLoop

from .pretty_utils import print_with_style


def is_temporary(path: str):
    """
    Whether @path is the temporary sibling of an output being written.
    """
    name = os.path.basename(path)
    return name.startswith('.') and name.endswith('.tmp')


def find_free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


class PageHandler(StaticFileHandler):
    """
    Serves files like GET would for HEAD requests as well, so that the
    Content-Length of pages includes the injected reload script. The body
    itself is never sent for HEAD. Answers matching ETags with 304.
    """
    def head(self, path: str):
        return self.get(path, include_body=True)

    def should_return_304(self):
        return web.StaticFileHandler.should_return_304(self)


class ReloadServer(Server):
    """
    A livereload Server that reports when it is listening, so it can be run
    on a background thread.
    """
    def __init__(self):
        super().__init__()
        self.listening = threading.Event()

    def application(self, *args, **kwargs):
        app = super().application(*args, **kwargs)
        self.listening.set()
        return app

    def get_web_handlers(self, script):
        return [
            (r'/(.*)', PageHandler, {
                'path': self.root or '.',
                'default_filename': self.default_filename,
            }),
        ]


class DevServer:
    """
    Serves @directory on a background thread and reloads connected browsers
    whenever its contents change. Port 0 picks a free port.

    livereload keeps its connection state on class attributes, so only one
    DevServer should run per process.
    """
    def __init__(self, directory: pathlib.Path, port: int, host: str = '127.0.0.1'):
        self.directory = pathlib.Path(directory).absolute()
        self.host = host
        self.requested_port = port
        self.port = port
        self.server: ReloadServer | None = None
        self.loop: IOLoop | None = None
        self._thread: threading.Thread | None = None
        self._error: Exception | None = None

    @property
    def url(self):
        return f'http://{self.host}:{self.port}'

    def _serve(self, server: ReloadServer):
        asyncio.set_event_loop(asyncio.new_event_loop())
        loop = self.loop = IOLoop.current()
        try:
            server.serve(port=self.port, host=self.host, root=str(self.directory))
        except Exception as e:
            self._error = e
            raise
        finally:
            server.listening.set()
            loop.close(all_fds=True)

    def start(self):
        self.directory.mkdir(parents=True, exist_ok=True)
        self.port = self.requested_port or find_free_port(self.host)
        self._error = None
        self.server = ReloadServer()
        self.server.watch(str(self.directory), ignore=is_temporary)
        self._thread = threading.Thread(target=self._serve, args=(self.server,), daemon=True)
        self._thread.start()
        self.server.listening.wait()
        if self._error is not None:
            self._thread.join()
            self._thread = None
            raise self._error
        print_with_style(f'Serving {self.directory} at {self.url}', style='green')

    def stop(self):
        if self._thread is None:
            return
        if self.loop is not None:
            self.loop.add_callback(self.loop.stop)
        self._thread.join()
        self._thread = None
        self.server = None
        self.loop = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()

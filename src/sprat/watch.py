"""
Re-running single Stages when their source files change, using watchdog.
"""
from __future__ import annotations

import asyncio
import typing as t
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from .core import Stage
    from .orchestrator import Orchestrator


CHANGE_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}


def event_paths(event: FileSystemEvent):
    paths = [event.src_path]
    if getattr(event, 'dest_path', None):
        paths.append(event.dest_path)
    return [Path(p.decode() if isinstance(p, bytes) else p) for p in paths]


class StageEventHandler(FileSystemEventHandler):
    """
    Forwards file changes matching a Stage's watch globs to the Orchestrator,
    from the observer thread into the event loop.
    """
    def __init__(self, stage: Stage, orchestrator: Orchestrator, loop: asyncio.AbstractEventLoop):
        self.stage = stage
        self.orchestrator = orchestrator
        self.loop = loop

    def matches(self, event: FileSystemEvent):
        if event.is_directory or event.event_type not in CHANGE_EVENTS:
            return False
        return any(self.stage.watches(p) for p in event_paths(event))

    def on_any_event(self, event: FileSystemEvent):
        if not self.matches(event):
            return
        print_with_style(f'[{self.stage.name}] {event.event_type}: {event.src_path}', style='cyan')
        self.loop.call_soon_threadsafe(self.orchestrator.trigger, self.stage.name)


class WatchTrigger:
    """
    Watches every Stage's source directory, re-running exactly the Stage
    whose watch globs matched a change. Must be started from within the
    running event loop.
    """
    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator
        self.observer = None
        self.handlers: dict[str, StageEventHandler] = {}

    def start(self):
        loop = asyncio.get_running_loop()
        self.observer = Observer()
        for name in self.orchestrator.order:
            stage = self.orchestrator.stages[name]
            if not stage.source_dir.is_dir():
                print_with_style(
                    f'[{name}] Not watching missing source directory {stage.source_dir}',
                    file='stderr',
                    style='yellow',
                )
                continue
            handler = StageEventHandler(stage, self.orchestrator, loop)
            self.handlers[name] = handler
            self.observer.schedule(handler, str(stage.source_dir), recursive=True)
        self.observer.start()
        print_with_style(f'Watching {len(self.handlers)} stage(s) for changes')

    def stop(self):
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None
        self.handlers.clear()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc_info):
        self.stop()

# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import os.path
import threading
from typing import Callable, Final

import watchdog.events
import watchdog.observers

from .json_formats import Filename


class MmlFileEventHandler(watchdog.events.FileSystemEventHandler):
    def __init__(self, mml_filename: Filename, compile_file: Callable[[], None], log_message: Callable[[str], None]):
        super().__init__()

        self.mml_filename: Final = os.path.abspath(mml_filename)
        self._compile_file: Final = compile_file
        self._log_message: Final = log_message

    def on_closed(self, event: watchdog.events.FileSystemEvent) -> None:
        if event.is_directory is False:
            self.process_file(str(event.src_path))

    def on_moved(self, event: watchdog.events.FileSystemMovedEvent) -> None:
        if event.is_directory is False:
            self.process_file(str(event.dest_path))

    def process_file(self, src_path: str) -> None:
        if os.path.abspath(src_path) != self.mml_filename:
            return

        self._log_message(f"File Changed: { os.path.relpath(src_path) }")
        self._compile_file()


def watch_mml_file(
    mml_filename: Filename, compile_file: Callable[[], None], log_message: Callable[[str], None], quit_event: threading.Event
) -> None:
    """
    Compile `mml_filename` and recompile it every time it changes.

    Blocks until `quit_event` is set.
    """

    handler: Final = MmlFileEventHandler(mml_filename, compile_file, log_message)

    compile_file()

    log_message("Starting filesystem watcher")

    fs_observer = watchdog.observers.Observer()  # type: ignore[no-untyped-call]
    fs_observer.schedule(handler, path=os.path.dirname(handler.mml_filename))  # type: ignore[no-untyped-call]
    fs_observer.start()  # type: ignore[no-untyped-call]

    try:
        quit_event.wait()
    finally:
        log_message("Stopping filesystem watcher")

        fs_observer.stop()  # type: ignore[no-untyped-call]
        fs_observer.join()

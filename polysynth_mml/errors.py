# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import sys
from io import StringIO

from typing import Final, Optional, TextIO, Union
from abc import abstractmethod

from .ansi_color import ColorTable, colors_for


class MultilineError(Exception):
    "An error with one indented line per problem"

    @abstractmethod
    def print_indented(self, fp: TextIO) -> None:
        pass

    def string_indented(self) -> str:
        with StringIO() as f:
            self.print_indented(f)
            return f.getvalue()


class FileError(Exception):
    def __init__(self, message: str, path: tuple[str, ...]):
        self.message: Final = message
        self.path: Final = path

    def __str__(self) -> str:
        return f"{ ' '.join(self.path) }: { self.message }"


def _write_file_error(e: FileError, fp: TextIO, ac: ColorTable) -> None:
    if e.path:
        filename, *json_path = e.path

        fp.write(ac.BOLD + ac.BRIGHT_WHITE + filename + ac.NORMAL)
        if json_path:
            fp.write(" " + ": ".join(json_path))
        fp.write(": ")

    fp.write(ac.BRIGHT_RED + e.message)


def print_error(msg: str, e: Optional[Union[str, Exception]] = None, fp: Optional[TextIO] = None) -> None:
    if fp is None:
        fp = sys.stderr

    ac: Final = colors_for(fp)

    fp.write(ac.BOLD + ac.BRIGHT_RED + msg)

    if e:
        fp.write(": " + ac.NORMAL)

        if isinstance(e, str):
            fp.write(e)
        elif isinstance(e, FileError):
            _write_file_error(e, fp, ac)
        elif isinstance(e, MultilineError):
            e.print_indented(fp)
        elif isinstance(e, (ValueError, RuntimeError, OSError)):
            fp.write(str(e))
        else:
            fp.write(f"{ type(e).__name__ }({ e })")

    fp.write(ac.RESET + "\n")

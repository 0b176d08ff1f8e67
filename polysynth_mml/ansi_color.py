# -*- coding: utf-8 -*-
# vim: set fenc=utf-8 ai ts=4 sw=4 sts=4 et:

import os
import sys
from typing import final, Final, TextIO, Type, Union


@final
class NoAnsiColors:
    RESET           : Final = ''

    BOLD            : Final = ''
    NORMAL          : Final = ''

    GREEN           : Final = ''
    BRIGHT_RED      : Final = ''
    BRIGHT_BLUE     : Final = ''
    BRIGHT_CYAN     : Final = ''
    BRIGHT_WHITE    : Final = ''



@final
class ForceAnsiColors:
    RESET           : Final = '\033[0m'

    BOLD            : Final = '\033[1m'
    NORMAL          : Final = '\033[22m'

    GREEN           : Final = '\033[32m'
    BRIGHT_RED      : Final = '\033[91m'
    BRIGHT_BLUE     : Final = '\033[94m'
    BRIGHT_CYAN     : Final = '\033[96m'
    BRIGHT_WHITE    : Final = '\033[97m'



ColorTable = Union[Type[NoAnsiColors], Type[ForceAnsiColors]]


def should_use_ansi_colors(fp: TextIO) -> bool:
    return (
        os.getenv('NO_COLOR', '') == ''
        and fp.isatty()
    )


def colors_for(fp: TextIO) -> ColorTable:
    return ForceAnsiColors if should_use_ansi_colors(fp) else NoAnsiColors


# Assumes `sys.stdout` is never changed.
AnsiColors : ColorTable = colors_for(sys.stdout)

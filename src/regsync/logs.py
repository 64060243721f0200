import logging
import sys
from enum import Enum

import structlog
from structlog.typing import Processor


class LogFormats(str, Enum):
    AUTO = 'auto'
    JSON = 'json'
    CONSOLE = 'console'


def is_terminal(stream=None):
    stream = stream or sys.stdout
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


def new_logger(log_format=LogFormats.AUTO, log_level='INFO', stream=None):
    """Build the logger handed to the scheduler, syncer and docker client.

    On a terminal events are rendered for humans without timestamps, anywhere
    else as JSON lines carrying an ISO timestamp.
    """
    stream = stream or sys.stdout
    log_format = LogFormats(log_format)
    if log_format == LogFormats.AUTO:
        log_format = LogFormats.CONSOLE if is_terminal(stream) else LogFormats.JSON

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError('unknown log level: ' + log_level)

    processors: list[Processor] = [structlog.processors.add_log_level]

    log_renderer: Processor
    if log_format == LogFormats.CONSOLE:
        log_renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        processors.append(structlog.processors.TimeStamper(fmt='iso'))
        processors.append(structlog.processors.format_exc_info)
        log_renderer = structlog.processors.JSONRenderer()
    processors.append(log_renderer)

    return structlog.wrap_logger(
        structlog.PrintLogger(file=stream),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=processors,
    )

"""
log.py - rcrelay logging module.

This module contains the logging portion of rcrelay. Other modules can access
the global logger object by importing "log" from this module
(from rcrelay.log import log).
"""

import logging
import logging.handlers
import os

from . import conf, world

# Stores a list of active file loggers.
fileloggers = []

console_level = conf.conf['logging'].get('console') or 'INFO'

logdir = os.path.join(os.getcwd(), 'log')

_format = '%(asctime)s [%(levelname)s] %(message)s'
logformatter = logging.Formatter(_format)

# Set up logging to STDERR
world.console_handler = logging.StreamHandler()
world.console_handler.setFormatter(logformatter)
world.console_handler.setLevel(console_level)

# Get the main logger object; other modules can import this variable for convenience.
log = logging.getLogger()
log.addHandler(world.console_handler)

# The root logger has to accept all events, so that each handler can filter on its own level.
log.setLevel(1)

def _flush_log_queue():
    """Logs any messages queued by modules (like conf) that load before us."""
    while world._log_queue:
        level, text = world._log_queue.popleft()
        log.log(level, text)

def _get_console_level():
    return conf.conf['logging'].get('console') or 'INFO'

def makeFileLogger(filename, level=None):
    """
    Initializes a file logging target with the given filename and level.
    """
    os.makedirs(logdir, exist_ok=True)
    # Use log names specific to the current instance, to prevent multiple
    # instances from overwriting each others' log files.
    target = os.path.join(logdir, '%s-%s.log' % (conf.confname, filename))

    logrotconf = conf.conf.get('logging', {}).get('filerotation', {})

    # Max amount of bytes per file, before rotation is done. Defaults to 50 MiB.
    maxbytes = logrotconf.get('max_bytes', 52428800)

    # Amount of backups to make (e.g. rcrelay-debug.log, rcrelay-debug.log.1, ...)
    # Defaults to 5.
    backups = logrotconf.get('backup_count', 5)

    filelogger = logging.handlers.RotatingFileHandler(target, maxBytes=maxbytes, backupCount=backups)
    filelogger.setFormatter(logformatter)

    # If no log level is specified, use the same one as the console.
    level = level or _get_console_level()
    filelogger.setLevel(level)

    log.addHandler(filelogger)
    fileloggers.append(filelogger)

    return filelogger

def stopFileLoggers():
    """
    De-initializes all file loggers.
    """
    for handler in fileloggers.copy():
        handler.close()
        log.removeHandler(handler)
        fileloggers.remove(handler)

def setup_logging():
    """
    (Re)applies the logging configuration; called by the launcher after the config is loaded.
    """
    world.console_handler.setLevel(_get_console_level())
    stopFileLoggers()

    # Set up file logging now, creating a file logger for each block.
    files = conf.conf['logging'].get('files')
    if files:
        for filename, config in files.items():
            makeFileLogger(filename, (config or {}).get('loglevel'))

    _flush_log_queue()

"""
utils.py - rcrelay utilities module.

This module contains the exception types shared across rcrelay, the hook registry
helpers, and small IRC string utilities.
"""

import importlib

# Load the core module package.
from rcrelay import coremods, protocols

from . import world
from .log import log

__all__ = ['COREMOD_PREFIX', 'PROTOCOL_PREFIX', 'ProtocolError', 'ParseError', 'FramingError',
           'add_hook', 'remove_hook', 'split_hostmask', 'to_lower']


COREMOD_PREFIX = coremods.__name__ + '.'
PROTOCOL_PREFIX = protocols.__name__ + '.'

class ProtocolError(RuntimeError):
    """
    Exception raised when a network protocol violation is encountered in some way.
    """

class ParseError(ProtocolError):
    """
    Exception raised when an incoming record can't be parsed into a message (it has no command).
    """
    def __init__(self, record, reason='malformed'):
        super().__init__('%s record %r' % (reason.capitalize(), record))
        self.record = record
        self.reason = reason

class FramingError(ProtocolError):
    """
    Exception raised by LineFramer when a record goes over the 512 byte line limit.
    """
    def __init__(self, length, limit):
        super().__init__('Record of %s+ bytes exceeds the %s byte limit; discarding it' % (length, limit))
        self.length = length
        self.limit = limit

def add_hook(func, command, priority=100):
    """
    Binds a hook function to the given command name.

    A custom priority can also be given (defaults to 100), and hooks with
    higher priority values will be called first."""
    command = command.upper()
    world.hooks[command].append((priority, func))
    world.hooks[command].sort(key=lambda pair: pair[0], reverse=True)
    return func

def remove_hook(func, command):
    """Unbinds a hook function previously bound with add_hook()."""
    command = command.upper()
    world.hooks[command] = [pair for pair in world.hooks[command] if pair[1] != func]

def _load_coremod(name):
    """
    Imports and returns the requested core module.
    """
    log.debug('_load_coremod: importing %s%s', COREMOD_PREFIX, name)
    return importlib.import_module(COREMOD_PREFIX + name)

def _get_protocol_module(name):
    """
    Imports and returns the protocol module requested.
    """
    return importlib.import_module(PROTOCOL_PREFIX + name)

def split_hostmask(mask):
    """
    Returns a nick!user@host hostmask split into three fields: nick, user, and host.
    """
    nick, identhost = mask.split('!', 1)
    ident, host = identhost.split('@', 1)
    if not all({nick, ident, host}):
        raise ValueError("Invalid user@host %r" % mask)
    return [nick, ident, host]

def to_lower(text):
    """
    Returns the lowercase representation of text, using the RFC1459 casemapping ({}|~ are
    the lowercase forms of []\\^).
    """
    if (not text) or (not isinstance(text, str)):
        return text
    text = text.replace('[', '{')
    text = text.replace(']', '}')
    text = text.replace('\\', '|')
    text = text.replace('^', '~')
    # Only ASCII letters are folded; unicode in channel names *is* case sensitive.
    return text.encode().lower().decode()

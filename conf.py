"""
conf.py - rcrelay configuration core.

This module is used to access the configuration of the current rcrelay instance.
It provides simple checks for validating and loading YAML-format configurations from arbitrary files.
"""

try:
    import yaml
except ImportError:
    raise ImportError("rcrelay requires PyYAML to function; please install it and try again.")

import logging
import os.path
import sys
from collections import defaultdict

from . import world

__all__ = ['ConfigurationError', 'conf', 'confname', 'validate', 'load_conf',
           'get_server_option', 'DEFAULT_AUTOCONNECT']

# Fixed delay (in seconds) between full reconnect cycles.
DEFAULT_AUTOCONNECT = 10

class ConfigurationError(RuntimeError):
    """Error when config conditions aren't met."""

conf = {'bot':
                {
                    'nick': 'RCRelay',
                    'user': 'rcrelay',
                    'realname': 'rcrelay IRC client',
                },
        'logging':
                {
                    'console': 'INFO'
                },
        'display':
                {
                    'color': True
                },
        'servers':
                # Wildcard defaultdict! This means that
                # any network name you try will work and return
                # this basic template:
                defaultdict(lambda: {'ip': '127.0.0.1',
                                     'port': 6667,
                                     'channels': [],
                                     'autoconnect': DEFAULT_AUTOCONNECT,
                                    })
        }
confname = 'unconfigured'

def validate(condition, errmsg):
    """Raises ConfigurationError with errmsg unless the given condition is met."""
    if not condition:
        raise ConfigurationError(errmsg)

def _log(level, text, *args, logger=None, **kwargs):
    if logger:
        logger.log(level, text, *args, **kwargs)
    else:
        world._log_queue.append((level, text))

def _validate_token_option(key, value, where):
    """
    Validates a nick, user, realname or password option. All of these end up on the wire,
    so nick, user and password must be single parameters, and nothing may break the line.
    """
    validate(isinstance(value, str) and value,
             "Missing or invalid %r option in %s." % (key, where))
    validate(not any(char in value for char in '\r\n\x00'),
             "The %r option in %s can't contain line breaks." % (key, where))
    if key != 'realname':
        validate(' ' not in value and not value.startswith(':'),
                 "The %r option in %s can't contain spaces or start with ':'." % (key, where))

def _validate_server_block(netname, block, logger=None):
    """Validates a single server block, filling in defaults where needed."""
    validate(isinstance(block, dict), "Server block for %r should be a mapping, not %s."
             % (netname, type(block).__name__))
    validate(isinstance(block.get('ip'), str) and block['ip'],
             "Missing or invalid 'ip' option in server block %r." % netname)

    port = block.get('port')
    validate(isinstance(port, int) and 0 < port < 65536,
             "Invalid port %r in server block %r." % (port, netname))

    channels = block.setdefault('channels', [])
    if isinstance(channels, str):
        # A single channel given as a string.
        channels = block['channels'] = [channels]
    validate(isinstance(channels, list) and all(isinstance(c, str) and c for c in channels),
             "Invalid channel list %r in server block %r." % (channels, netname))
    for channel in channels:
        validate(' ' not in channel and ',' not in channel,
                 "Invalid channel name %r in server block %r." % (channel, netname))

    autoconnect = block.setdefault('autoconnect', DEFAULT_AUTOCONNECT)
    validate(isinstance(autoconnect, (int, float)) and autoconnect >= 0,
             "Invalid autoconnect delay %r in server block %r: it must be a number >= 0."
             % (autoconnect, netname))

    # Per-network overrides of the bot section, plus the optional server password.
    for key in ('nick', 'user', 'realname', 'password'):
        if block.get(key) is not None:
            _validate_token_option(key, block[key], 'server block %r' % netname)

    if block.get('ssl'):
        _log(logging.WARNING, "(%s) TLS/SSL is not supported; ignoring the 'ssl' option."
             % netname, logger=logger)

def _validate_conf(conf, logger=None):
    """Validates a parsed configuration dict."""
    validate(isinstance(conf, dict),
            "Invalid configuration given: should be type dict, not %s."
            % type(conf).__name__)

    for section in ('bot', 'servers'):
        validate(conf.get(section), "Missing %r section in config." % section)

    validate(isinstance(conf['bot'], dict), "The 'bot' section should be a mapping.")
    for key in ('nick', 'user', 'realname'):
        _validate_token_option(key, conf['bot'].get(key), 'the bot section')

    validate(isinstance(conf['servers'], dict), "The 'servers' section should be a mapping of "
             "network names to server blocks.")
    for netname, block in conf['servers'].items():
        _validate_server_block(netname, block, logger=logger)

    conf.setdefault('logging', {'console': 'INFO'})
    conf.setdefault('display', {'color': True})

    return conf

def load_conf(filename, errors_fatal=True, logger=None):
    """Loads an rcrelay configuration file from the filename given."""
    global confname, conf
    # For the internal config name, strip off any .yml extensions and absolute paths
    confname = os.path.splitext(os.path.basename(filename))[0]
    try:
        with open(filename, 'r') as f:
            conf = yaml.safe_load(f)
            conf = _validate_conf(conf, logger=logger)
    except Exception as e:
        e = 'Failed to load config from %r: %s: %s' % (filename, type(e).__name__, e)

        if logger:  # Prefer using the Python logger when available
            logger.exception(e)
        else:  # Otherwise, fall back to a print() call.
            print('ERROR: %s' % e, file=sys.stderr)

        if errors_fatal:
            sys.exit(1)

        raise
    else:
        return conf

def get_server_option(serverdata, option, default=None):
    """
    Returns a bot option (nick, user, realname) for the given server block, falling back to
    the global bot section and then the default given.
    """
    value = serverdata.get(option)
    if value is None:
        value = conf['bot'].get(option, default)
    return value

"""
display.py - Renders IRC events as terminal lines.

Each hook below turns one kind of event into a line on the display stream, coloured
with ANSI codes when the stream is a terminal and colours are enabled in the config.
"""
import sys
import threading

from rcrelay import conf, utils
from rcrelay.log import log

__all__ = ['output', 'format_line']

# Stream that display lines are written to.
output = sys.stdout
_output_lock = threading.Lock()

# Terminal palette numbers (0-7 normal, 8-15 bright).
MOTD_COLOR = 5
NOTICE_PREFIX_COLOR = 1
NOTICE_TEXT_COLOR = 3
PRIVMSG_PREFIX_COLOR = 9
PRIVMSG_TEXT_COLOR = 11
RAW_COLOR = 6
STATUS_COLOR = 2
ERROR_COLOR = 1

def _use_color():
    if not conf.conf.get('display', {}).get('color', True):
        return False
    isatty = getattr(output, 'isatty', None)
    return bool(isatty and isatty())

def _colorize(color, text):
    if color < 8:
        code = 30 + color
    else:
        code = 90 + (color - 8)
    return '\x1b[%sm%s\x1b[0m' % (code, text)

def format_line(*segments, color=None):
    """
    Joins (color, text) segments into one display line. Colors are dropped when color
    is False; None means "decide from the output stream".
    """
    if color is None:
        color = _use_color()
    if color:
        return ''.join(_colorize(c, text) for c, text in segments)
    return ''.join(text for _, text in segments)

def _write(*segments):
    line = format_line(*segments)
    with _output_lock:
        output.write(line + '\n')
        output.flush()

def _source_label(irc, source):
    if source is None:
        return irc.uplink or '*'
    return source.shorten()

def handle_motd(irc, source, command, args):
    _write((MOTD_COLOR, args['text']))
utils.add_hook(handle_motd, 'MOTD')

def handle_notice(irc, source, command, args):
    if args['target'] == '*':
        # Server notices sent before registration.
        _write((NOTICE_PREFIX_COLOR, 'NOTICE: '), (NOTICE_TEXT_COLOR, args['text']))
    else:
        _write((NOTICE_PREFIX_COLOR, '%s %s NOTICE: ' % (args['target'], _source_label(irc, source))),
               (NOTICE_TEXT_COLOR, args['text']))
utils.add_hook(handle_notice, 'NOTICE')

def handle_privmsg(irc, source, command, args):
    _write((PRIVMSG_PREFIX_COLOR, '%s %s: ' % (args['target'], _source_label(irc, source))),
           (PRIVMSG_TEXT_COLOR, args['text']))
utils.add_hook(handle_privmsg, 'PRIVMSG')

def handle_raw(irc, source, command, args):
    _write((RAW_COLOR, '%s, %s, [%s]' % (_source_label(irc, source), command,
                                          ', '.join(args['params']))))
utils.add_hook(handle_raw, 'RAW')

def handle_endburst(irc, source, command, args):
    _write((STATUS_COLOR, '(%s) *** Registered as %s; joining %s' %
            (irc.name, irc.session.nickname, ', '.join(args['channels']) or 'no channels')))
utils.add_hook(handle_endburst, 'ENDBURST')

def handle_error(irc, source, command, args):
    _write((ERROR_COLOR, '(%s) *** ERROR from server: %s' % (irc.name, args['text'])))
utils.add_hook(handle_error, 'ERROR')

def handle_parse_error(irc, source, command, args):
    _write((ERROR_COLOR, '(%s) *** %s' % (irc.name, args['text'])))
utils.add_hook(handle_parse_error, 'RCRELAY_PARSE_ERROR')
utils.add_hook(handle_parse_error, 'RCRELAY_FRAMING_ERROR')

def handle_disconnect(irc, source, command, args):
    if irc._stopped.is_set():
        _write((ERROR_COLOR, '(%s) *** Disconnected' % irc.name))
    else:
        _write((ERROR_COLOR, '(%s) *** Disconnected; reconnecting in %s seconds' %
                (irc.name, irc.autoconnect)))
    log.debug('(%s) display: disconnect shown (was_successful=%s)', irc.name, args['was_successful'])
utils.add_hook(handle_disconnect, 'RCRELAY_DISCONNECT')

"""
irc_common.py: Common base protocol class with the RFC1459 message parser and command dispatch.
"""

from rcrelay import conf, utils
from rcrelay.classes import (ClientIdentity, IRCNetwork, Message, ParseError, ProtocolError,
                             ServerName)
from rcrelay.log import log

__all__ = ['IRCCommonProtocol']

class IRCCommonProtocol(IRCNetwork):
    # handle_* methods that aren't command handlers.
    NON_HANDLERS = {'events', 'default'}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        # Lists required conf keys for the server block.
        self.conf_keys = {'ip', 'port'}

    def validate_server_conf(self):
        """Validates that the server block given contains the required keys."""
        for k in self.conf_keys:
            log.debug('(%s) Checking presence of conf key %r', self.name, k)
            conf.validate(k in self.serverdata,
                     "Missing option %r in server block for network %s."
                     % (k, self.name))

        port = self.serverdata['port']
        conf.validate(isinstance(port, int) and 0 < port < 65536,
                      "Invalid port %r for network %s" % (port, self.name))

    @staticmethod
    def parse_source(token):
        """
        Parses a message prefix into a ClientIdentity (for nick!user@host prefixes)
        or a ServerName (anything else).
        """
        if '!' in token and '@' in token:
            try:
                nick, ident, host = utils.split_hostmask(token)
            except ValueError:
                pass
            else:
                return ClientIdentity(nick, ident, host)
        return ServerName(token)

    @classmethod
    def parse_message(cls, record):
        """
        Parses one RFC1459 record into a Message:

            [':' source ' '] command [' ' param]* [' :' trailing]

        The first parameter starting with ":" opens the trailing parameter, which runs
        to the end of the record (spaces included). Raises ParseError if there is no
        command.
        """
        source = None
        rest = record

        if rest.startswith(':'):
            prefix, _, rest = rest[1:].partition(' ')
            if prefix:
                source = cls.parse_source(prefix)

        command, _, rest = rest.lstrip(' ').partition(' ')
        if not command:
            raise ParseError(record)

        params = []
        trailing = None
        while rest:
            if rest.startswith(':'):
                trailing = rest[1:]
                break
            param, _, rest = rest.partition(' ')
            if param:  # Skip empty args caused by repeated spaces
                params.append(param)

        return Message(source, command, tuple(params), trailing)

    @classmethod
    def parse_args(cls, line):
        """
        Parses a line into a flat list of [command, args...], where a ":"-prefixed
        argument runs until the end of the line. Any source prefix is dropped.
        """
        message = cls.parse_message(line)
        return [message.command] + message.args

    def handle_events(self, line):
        """Event handler: parses a line and calls the matching handle_<command> method."""
        message = self.parse_message(line)
        source = message.source
        if source is None and self.uplink:
            # Raw command without an explicit sender; assume it's being sent by our uplink.
            source = ServerName(self.uplink)

        # Commands are case insensitive; hooks are registered under upper case names.
        command = message.command.upper()
        func = None
        if command.lower() not in self.NON_HANDLERS:
            func = getattr(self, 'handle_' + command.lower(), None)
        if func is None:  # unhandled command
            func = self.handle_default

        parsed_args = func(source, command, message.args)
        if parsed_args is not None:
            return [source, command, parsed_args]

    def handle_default(self, source, command, args):
        """Passes unhandled commands on as RAW hooks."""
        return {'parse_as': 'RAW', 'params': args}

    def handle_error(self, source, command, args):
        """Handles ERROR messages - these mean that our uplink has disconnected us!"""
        text = args[-1] if args else ''
        log.error('(%s) Received ERROR from uplink, disconnecting: %s', self.name, text)
        self.disconnect()
        return {'text': text}

    def handle_pong(self, source, command, args):
        """Handles incoming PONG commands."""
        log.debug('(%s) Got PONG from %s: %s', self.name, source, args)

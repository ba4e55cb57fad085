"""
clientbot.py: Clientbot (regular IRC bot) protocol module for rcrelay.
"""

from rcrelay import conf, utils
from rcrelay.classes import Session
from rcrelay.log import log
from rcrelay.protocols.irc_common import IRCCommonProtocol

__all__ = ['ClientbotProtocol']

class ClientbotProtocol(IRCCommonProtocol):
    """
    Client side of the RFC1459 registration handshake: identify with NICK/USER, retry the
    nick on collisions, then join the configured channels once the MOTD is over.
    """

    def post_connect(self):
        """Identifies us to the server; this is the only place USER is ever sent."""
        session = self.session

        password = self.serverdata.get("password")
        if password:
            self.send('PASS', [password])

        ident = conf.get_server_option(self.serverdata, 'user')
        realname = conf.get_server_option(self.serverdata, 'realname')

        self.send('NICK', [session.nickname])
        self.send('USER', [ident, '0', '*'], realname)
        session.state = Session.AWAITING_WELCOME

    def is_own_source(self, source):
        """Returns whether the given message source is us."""
        if source is None or self.session is None:
            return False
        return utils.to_lower(source.shorten()) == utils.to_lower(self.session.nickname)

    def join_channels(self):
        """Joins every channel configured for this network."""
        channels = self.serverdata.get('channels') or []
        for channel in channels:
            self.send('JOIN', trailing=channel)
        return channels

    def handle_001(self, source, command, args):
        """
        Handles 001 / RPL_WELCOME.
        """
        # <- :irc.example.net 001 RCRelay :Welcome to the network RCRelay
        if source is not None:
            self.uplink = source.shorten()

        # The server tells us which nick we actually got.
        if args:
            self.session.nickname = args[0]

        log.info('(%s) Registered as %s with %s', self.name, self.session.nickname, self.uplink)
        return {'parse_as': 'WELCOME', 'text': args[-1] if args else ''}

    def handle_375(self, source, command, args):
        """Handles 375 / RPL_MOTDSTART."""
        return

    def handle_372(self, source, command, args):
        """Handles 372 / RPL_MOTD."""
        # <- :irc.example.net 372 RCRelay :- Welcome!
        if len(args) != 2:
            log.debug('(%s) Got confusing MOTD line %r', self.name, args)
            return self.handle_default(source, command, args)
        return {'parse_as': 'MOTD', 'text': args[1]}

    def handle_376(self, source, command, args):
        """
        Handles end of MOTD numerics: this finishes registration and joins our channels.
        """
        session = self.session
        if session.state != Session.AWAITING_WELCOME:
            log.debug('(%s) Ignoring %s since registration is already done', self.name, command)
            return

        channels = self.join_channels()
        session.state = Session.REGISTERED
        self.connected.set()

        log.info('(%s) Registration complete; joining %s', self.name, ', '.join(channels) or 'no channels')
        return {'parse_as': 'ENDBURST', 'channels': list(channels)}

    # 422 / ERR_NOMOTD: no MOTD to wait for, proceed as if it ended.
    handle_422 = handle_376

    def handle_433(self, source, command, args):
        """Handles 433 / ERR_NICKNAMEINUSE."""
        # <- :irc.example.net 433 * RCRelay :Nickname is already in use.
        session = self.session
        if session.state != Session.AWAITING_WELCOME:
            log.warning('(%s) Nick %s is in use; keeping %s', self.name,
                        args[1] if len(args) > 1 else '?', session.nickname)
            return

        newnick = session.collide_nick()
        log.debug('(%s) nick_collisions = %s, trying new nick %r', self.name,
                  session.nick_collisions, newnick)
        self.send('NICK', [newnick])

    def handle_ping(self, source, command, args):
        """
        Handles incoming PING requests.
        """
        if args:
            self.send('PONG', trailing=args[0])
        else:
            self.send('PONG')

    def handle_privmsg(self, source, command, args):
        """Handles incoming PRIVMSG/NOTICE."""
        # <- :sender!user@host PRIVMSG #dev :afasfsa
        # <- :irc.example.net NOTICE * :*** Looking up your hostname...
        if len(args) != 2:
            log.debug('(%s) Got confusing %s %r', self.name, command, args)
            return self.handle_default(source, command, args)

        target, text = args
        return {'target': target, 'text': text, 'is_notice': command.upper() == 'NOTICE'}
    handle_notice = handle_privmsg

    def handle_join(self, source, command, args):
        """Handles incoming JOINs, tracking the channels we're in."""
        # <- :RCRelay!rcrelay@host JOIN :#a
        if not args:
            return
        channel = args[0]
        if self.is_own_source(source):
            log.debug('(%s) Joined %s', self.name, channel)
            self.session.channels.add(channel)
        return {'channel': channel}

    def handle_part(self, source, command, args):
        """Handles incoming PARTs."""
        # <- :RCRelay!rcrelay@host PART #a,#b :bye
        if not args:
            return
        channels = args[0].split(',')
        if self.is_own_source(source):
            for channel in channels:
                self.session.channels.discard(channel)
        return {'channels': channels, 'text': args[1] if len(args) > 1 else ''}

    def handle_kick(self, source, command, args):
        """Handles incoming KICKs."""
        # <- :op!op@host KICK #a RCRelay :reason
        if len(args) < 2:
            return
        channel, target = args[0], args[1]
        if utils.to_lower(target) == utils.to_lower(self.session.nickname):
            log.warning('(%s) Kicked from %s by %s', self.name, channel,
                        source.shorten() if source else 'server')
            self.session.channels.discard(channel)
        return {'channel': channel, 'target': target, 'text': args[2] if len(args) > 2 else ''}

    def handle_nick(self, source, command, args):
        """Handles NICK changes, including ones forced on us."""
        if not args:
            return
        if self.is_own_source(source):
            log.info('(%s) Our nick changed to %s', self.name, args[0])
            self.session.nickname = args[0]
        return {'newnick': args[0]}

Class = ClientbotProtocol

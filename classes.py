"""
classes.py - Base classes for rcrelay.

This module contains the base classes used by rcrelay: the message model, the
line framer, per-connection session state, and the threaded IRC connection
that ties them together.
"""

import collections
import queue
import socket
import textwrap
import threading

from . import conf, world
from .log import log
from .structures import IRCCaseInsensitiveSet
from .utils import FramingError, ParseError, ProtocolError

__all__ = ['ServerName', 'ClientIdentity', 'Message', 'OutboundCommand', 'LineFramer',
           'Session', 'NetworkCore', 'IRCNetwork', 'ProtocolError', 'ParseError',
           'FramingError', 'MAX_LINE_LENGTH', 'MAX_RECORD_LENGTH']

QUEUE_FULL = queue.Full

# RFC1459 line limit, including the CR-LF terminator.
MAX_LINE_LENGTH = 512
MAX_RECORD_LENGTH = MAX_LINE_LENGTH - 2

### Message model

class ServerName(collections.namedtuple('ServerName', 'name')):
    """Message source naming a server (e.g. irc.example.net)."""
    __slots__ = ()

    def shorten(self):
        return self.name

    def __str__(self):
        return self.name

class ClientIdentity(collections.namedtuple('ClientIdentity', 'nick user host')):
    """Message source naming a client by its nick!user@host."""
    __slots__ = ()

    def shorten(self):
        return self.nick

    def __str__(self):
        return '%s!%s@%s' % self

class Message(collections.namedtuple('Message', 'source command params trailing')):
    """
    A parsed IRC message. source is a ServerName, ClientIdentity, or None; params is a
    tuple of middle parameters and trailing is the text after " :" (or None if absent).
    """
    __slots__ = ()

    @property
    def args(self):
        """Returns all parameters in order, with the trailing parameter (if any) last."""
        if self.trailing is None:
            return list(self.params)
        return list(self.params) + [self.trailing]

    @property
    def source_name(self):
        """Returns the display form of the source: the nick for clients, the name for servers."""
        if self.source is None:
            return None
        return self.source.shorten()

class OutboundCommand(collections.namedtuple('OutboundCommand', 'command params trailing source')):
    """
    An IRC command to be written to the uplink.
    """
    __slots__ = ()

    def __new__(cls, command, params=(), trailing=None, source=None):
        return super().__new__(cls, command, tuple(params), trailing, source)

    @staticmethod
    def _check_token(kind, token):
        if not token or ' ' in token or token.startswith(':'):
            raise ProtocolError('Invalid %s %r: must be non-empty and not contain spaces or '
                                'start with ":"' % (kind, token))
        if any(char in token for char in '\r\n\0'):
            raise ProtocolError('Invalid %s %r: contains a line break or NUL' % (kind, token))

    def to_line(self):
        """Returns the wire form of this command as text, without the line terminator."""
        parts = []
        if self.source is not None:
            self._check_token('source', self.source)
            parts.append(':' + self.source)

        self._check_token('command', self.command)
        parts.append(self.command)

        for param in self.params:
            self._check_token('parameter', param)
            parts.append(param)

        if self.trailing is not None:
            if any(char in self.trailing for char in '\r\n\0'):
                raise ProtocolError('Invalid trailing parameter %r: contains a line break or NUL'
                                    % self.trailing)
            parts.append(':' + self.trailing)

        return ' '.join(parts)

    def serialize(self, encoding='utf-8'):
        """
        Returns the wire form of this command as bytes, CR-LF included.

        Raises ProtocolError if the result is over the 512 byte line limit; nothing is
        truncated.
        """
        data = self.to_line().encode(encoding, 'replace') + b'\r\n'
        if len(data) > MAX_LINE_LENGTH:
            raise ProtocolError('Outgoing %s line is %s bytes long, over the %s byte limit'
                                % (self.command, len(data), MAX_LINE_LENGTH))
        return data

### Framing

class LineFramer():
    """
    Splits a stream of bytes into records terminated by CR and/or LF.

    Records with more than MAX_RECORD_LENGTH bytes of content are rejected: next_record()
    raises FramingError once for each, and its bytes are dropped up to and including its
    terminator, however the stream happens to be chunked.
    """

    def __init__(self, limit=MAX_RECORD_LENGTH):
        self.limit = limit
        self._buffer = bytearray()
        self._discarding = False

    def __len__(self):
        return len(self._buffer)

    def feed(self, data):
        """Appends newly received bytes to the buffer."""
        self._buffer += data

    @staticmethod
    def _find_terminator(data):
        cr = data.find(b'\r')
        lf = data.find(b'\n')
        if cr == -1:
            return lf
        elif lf == -1:
            return cr
        return min(cr, lf)

    def next_record(self):
        """
        Returns the next complete record (without its terminator), or None if the buffer
        doesn't hold one yet.
        """
        while True:
            pos = self._find_terminator(self._buffer)

            if self._discarding:
                if pos == -1:
                    self._buffer.clear()
                    return None
                # Drop the rest of the overlong record, terminator included.
                del self._buffer[:pos+1]
                self._discarding = False
                continue

            if pos == -1:
                if len(self._buffer) > self.limit:
                    length = len(self._buffer)
                    self._buffer.clear()
                    self._discarding = True
                    raise FramingError(length, MAX_LINE_LENGTH)
                return None

            record = bytes(self._buffer[:pos])
            del self._buffer[:pos+1]
            if len(record) > self.limit:
                raise FramingError(len(record), MAX_LINE_LENGTH)
            return record

    def finish(self):
        """
        Returns whatever partial record is left at end of stream (or None if there's none), and
        resets the framer.
        """
        record = None
        if self._buffer and not self._discarding and len(self._buffer) <= self.limit:
            record = bytes(self._buffer)
        self._buffer.clear()
        self._discarding = False
        return record

### Connection state

class Session():
    """
    Connection-scoped client state: our nickname, registration status, and joined channels.
    A new Session is made for every connection.
    """
    CONNECTING = 'connecting'
    AWAITING_WELCOME = 'awaiting_welcome'
    REGISTERED = 'registered'

    def __init__(self, nickname):
        self._nickname = nickname
        self._lock = threading.Lock()
        self.state = self.CONNECTING
        self.channels = IRCCaseInsensitiveSet()

        # Number of nick collisions (433) seen during registration.
        self.nick_collisions = 0

    @property
    def nickname(self):
        with self._lock:
            return self._nickname

    @nickname.setter
    def nickname(self, newnick):
        with self._lock:
            self._nickname = newnick

    @property
    def registered(self):
        return self.state == self.REGISTERED

    def collide_nick(self):
        """Appends an underscore to our nick after a collision, returning the new nick."""
        with self._lock:
            self._nickname += '_'
            self.nick_collisions += 1
            return self._nickname

    def __repr__(self):
        return 'Session(%s/%s)' % (self.nickname, self.state)

### Networks

class NetworkCore():
    """Base network object for rcrelay: configuration, hooks, and reconnect timing."""

    def __init__(self, netname):
        self.name = netname
        self.conf = conf.conf
        # serverdata may be overridden as a property on some protocols
        if not hasattr(self, 'serverdata'):
            self.serverdata = conf.conf['servers'][netname]

        # Set once registration completes (MOTD end or missing MOTD).
        self.connected = threading.Event()
        self._aborted = threading.Event()
        self._stopped = threading.Event()

        self.was_successful = False
        self.session = None

        self._init_vars()

    def _init_vars(self):
        """
        (Re)sets a network object to its default state. This should be called when
        it is first created, and on every reconnection to a network.
        """
        self.encoding = self.serverdata.get('encoding') or 'utf-8'
        self.autoconnect = self.serverdata.get('autoconnect', conf.DEFAULT_AUTOCONNECT)

        # Name of the server we're connected to, as given by its 001 reply.
        self.uplink = None

    def __repr__(self):
        return "<%s object for network %r>" % (self.__class__.__name__, self.name)

    ## Stubs
    def validate_server_conf(self):
        return

    def connect(self):
        raise NotImplementedError

    def disconnect(self):
        raise NotImplementedError

    ## General utility functions
    def get_nick(self):
        """Returns the nick configured for this network."""
        return conf.get_server_option(self.serverdata, 'nick')

    def call_hooks(self, hook_args):
        """Calls a hook function with the given hook args."""
        source, command, parsed_args = hook_args
        # Individual handlers can return a 'parse_as' key to send their payload to
        # a different hook.
        hook_cmd = (parsed_args.get('parse_as') or command).upper()

        log.debug('(%s) Raw hook data: [%r, %r, %r] received from %s handler '
                  '(calling hook %s)', self.name, source, hook_cmd, parsed_args,
                  command, hook_cmd)

        # Iterate over registered hook functions, catching errors accordingly.
        for hook_pair in world.hooks[hook_cmd].copy():
            hook_func = hook_pair[1]
            try:
                log.debug('(%s) Calling hook function %s from module "%s"', self.name,
                          hook_func, hook_func.__module__)
                retcode = hook_func(self, source, command, parsed_args)

                if retcode is False:
                    log.debug('(%s) Stopping hook loop for %r (command=%r)', self.name,
                              hook_func, command)
                    break

            except Exception:
                # Display and relay hooks shouldn't take the connection down with them.
                log.exception('(%s) Unhandled exception caught in hook %r from module "%s"',
                              self.name, hook_func, hook_func.__module__)
                log.error('(%s) The offending hook data was: %s', self.name,
                          hook_args)
                continue

    ## Shared helper functions
    def _pre_connect(self):
        """
        Implements triggers called before a network connects.
        """
        self._aborted.clear()
        self._init_vars()

        try:
            self.validate_server_conf()
        except Exception as e:
            log.error("(%s) Configuration error: %s", self.name, e)
            raise

    def _run_autoconnect(self):
        """
        Blocks for the autoconnect delay and returns True if we should connect again.
        """
        if world.shutting_down.is_set() or self._stopped.is_set():
            log.debug('(%s) _run_autoconnect: aborting autoconnect attempt since we are '
                      'shutting down.', self.name)
            return False

        log.info('(%s) _run_autoconnect: Going to auto-reconnect in %s seconds.', self.name,
                 self.autoconnect)
        # Continue when either stop() is called or the delay passes. Compared to time.sleep(),
        # this lets us shut down without waiting out the delay.
        if self._stopped.wait(self.autoconnect):
            log.debug('(%s) _run_autoconnect: Stopping connect loop', self.name)
            return False
        return not world.shutting_down.is_set()

    def _pre_disconnect(self):
        """
        Implements triggers called before a network disconnects.
        """
        self._aborted.set()
        self.was_successful = self.connected.is_set()
        log.debug('(%s) _pre_disconnect: got %s for was_successful state', self.name, self.was_successful)

        log.debug('(%s) _pre_disconnect: Clearing self.connected state.', self.name)
        self.connected.clear()

    def _post_disconnect(self):
        """
        Implements triggers called after a network disconnects.
        """
        # Internal hook signifying that a network has disconnected.
        self.call_hooks([None, 'RCRELAY_DISCONNECT', {'was_successful': self.was_successful}])

        # Session state never survives a reconnect.
        self.session = None

class IRCNetwork(NetworkCore):
    """
    A threaded connection to an IRC server. One supervising thread per network connects,
    runs the blocking read loop, and reconnects after a fixed delay whenever the
    connection ends.
    """
    RECV_SIZE = 2048

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        self._socket = None
        self._framer = None
        self._send_lock = threading.Lock()
        self._connect_thread = None
        self._queue_thread = None

    def _init_vars(self, *args, **kwargs):
        super()._init_vars(*args, **kwargs)

        self.maxsendq = self.serverdata.get('maxsendq', 4096)
        self._queue = queue.Queue(self.maxsendq)

    def _log_connection_error(self, *args, **kwargs):
        # Log connection errors to ERROR unless were shutting down (in which case,
        # the given text goes to DEBUG).
        if self._aborted.is_set() or self._stopped.is_set() or world.shutting_down.is_set():
            log.debug(*args, **kwargs)
        else:
            log.error(*args, **kwargs)

    def _connect(self):
        """
        Connects to the network and runs the registration handshake.
        """
        self._pre_connect()

        remote = self.serverdata["ip"]
        port = self.serverdata["port"]

        dns_result = socket.getaddrinfo(remote, port, type=socket.SOCK_STREAM)[0]
        address = dns_result[-1]
        log.debug('(%s) Resolving address %s to %s', self.name, remote, address[0])

        # Create the actual socket.
        self._socket = socket.socket(dns_result[0], socket.SOCK_STREAM)

        # We never time out reads ourselves; a stalled peer is only noticed through TCP keepalive.
        if self.serverdata.get('keepalive', True):
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        log.info("Connecting to network %r on %s:%s", self.name, address[0], port)
        self._socket.settimeout(self.serverdata.get('connect_timeout', 30))
        self._socket.connect(address)
        self._socket.settimeout(None)

        if self._stopped.is_set() or self._aborted.is_set():
            log.debug("(%s) _connect: dropping socket %s as the network was stopped",
                      self.name, self._socket)
            self._aborted.set()
            return

        self._framer = LineFramer()
        self.session = Session(self.get_nick())

        self._queue_thread = threading.Thread(name="Queue thread for %s" % self.name,
                                              target=self._process_queue, daemon=True)
        self._queue_thread.start()

        # Let the protocol module identify us to the server.
        self.post_connect()
        log.info('(%s) Server ready; listening for data.', self.name)

    def _run_forever(self):
        """Connection supervisor: (re)connects and runs the read loop until stopped."""
        while not (self._stopped.is_set() or world.shutting_down.is_set()):
            try:
                self._connect()
                self._run_irc()
            except Exception:
                self._log_connection_error('(%s) Disconnected from IRC:', self.name, exc_info=True)
            finally:
                self._cleanup()

            if not self._run_autoconnect():
                break
        log.debug('(%s) Connection loop for %s finished.', self.name, self)

    def connect(self):
        """
        Starts a thread to connect the network.
        """
        if self.is_alive():
            log.debug('(%s) Ignoring connect() since a connection loop is already running', self.name)
            return

        self._stopped.clear()
        self._connect_thread = threading.Thread(target=self._run_forever, daemon=True,
                                                name="Connect thread for %s" % self.name)
        self._connect_thread.start()

    def is_alive(self):
        """Returns whether this network's connection loop is running."""
        return self._connect_thread is not None and self._connect_thread.is_alive()

    def stop(self, timeout=None):
        """Disconnects for good: no reconnection attempt follows."""
        log.debug('(%s) stop: stopping connection loop', self.name)
        self._stopped.set()
        self.disconnect()
        if self._connect_thread is not None and self._connect_thread is not threading.current_thread():
            self._connect_thread.join(timeout)

    def disconnect(self):
        """
        Handle disconnects from the remote server. This can be called from any thread: it
        wakes up the read loop, which then tears the connection down and reconnects.
        """
        if self._aborted.is_set():
            return

        self._pre_disconnect()

        sock = self._socket
        if sock is not None:
            try:
                log.debug('(%s) disconnect: shutting down socket %s', self.name, sock)
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                log.debug('(%s) Error on socket shutdown:', self.name, exc_info=True)

    def _cleanup(self):
        """Releases everything tied to the last connection. Called by the connection loop."""
        self.disconnect()

        # Stop the queue thread; anything left in it is dropped.
        with self._queue.mutex:
            self._queue.queue.clear()
        self._queue.put_nowait(None)
        if self._queue_thread is not None:
            self._queue_thread.join(10)
            self._queue_thread = None

        if self._socket is not None:
            log.debug('(%s) _cleanup: closing socket %s', self.name, self._socket)
            self._socket.close()
            self._socket = None

        self._framer = None
        self._post_disconnect()

    def handle_events(self, line):
        raise NotImplementedError

    def post_connect(self):
        raise NotImplementedError

    def parse_irc_command(self, line):
        """Sends a command to the protocol module."""
        log.debug("(%s) <- %s", self.name, line)
        if not line:
            return

        try:
            hook_args = self.handle_events(line)
        except ParseError as e:
            log.warning('(%s) Skipping unparseable line: %s', self.name, e)
            self.call_hooks([None, 'RCRELAY_PARSE_ERROR', {'text': str(e), 'line': line}])
            return
        except OSError:
            # Write failures while replying: the connection loop reconnects.
            raise
        except Exception:
            log.exception('(%s) Caught error in handle_events, disconnecting!', self.name)
            log.error('(%s) The offending line was: <- %s', self.name, line)
            self.disconnect()
            return

        # Only call our hooks if there's data to process. Handlers that support
        # hooks will return a dict of parsed arguments.
        if hook_args is not None:
            self.call_hooks(hook_args)

        return hook_args

    def _handle_record(self, record):
        """Decodes one raw record and dispatches it."""
        line = record.decode(self.encoding, 'replace')
        self.parse_irc_command(line)

    def _process_records(self):
        """Dispatches every complete record currently held by the framer."""
        while not self._aborted.is_set():
            try:
                record = self._framer.next_record()
            except FramingError as e:
                log.warning('(%s) %s', self.name, e)
                self.call_hooks([None, 'RCRELAY_FRAMING_ERROR', {'text': str(e), 'length': e.length}])
                continue

            if record is None:
                break
            self._handle_record(record)

    def _run_irc(self):
        """
        Blocking read loop: reads data off the socket until the connection ends.
        """
        while not self._aborted.is_set():
            try:
                data = self._socket.recv(self.RECV_SIZE)
            except OSError:
                # Suppress socket read errors from lingering recv() calls if
                # we've been told to shutdown.
                if self._aborted.is_set():
                    return
                raise

            if not data:
                self._log_connection_error('(%s) Connection lost, disconnecting.', self.name)
                break

            self._framer.feed(data)
            self._process_records()

        if self._aborted.is_set():
            return

        # The stream ended: whatever partial record is left is the last one.
        record = self._framer.finish()
        if record:
            self._handle_record(record)

    def _send(self, command):
        """Writes an OutboundCommand to the uplink, in one locked write."""
        if self._aborted.is_set() or self._socket is None:
            log.debug("(%s) Not sending message %r since the connection is dead", self.name, command)
            return

        encoded_data = command.serialize(self.encoding)
        log.debug("(%s) -> %s", self.name, command.to_line())

        with self._send_lock:
            self._socket.sendall(encoded_data)

    def send(self, command, params=(), trailing=None, source=None, queue=False):
        """
        Sends a command to the uplink. Replies from the read loop go out directly; other
        threads (e.g. relays) should use queue=True, which passes the command on to the
        queue thread.
        """
        outgoing = OutboundCommand(command, params, trailing, source)
        # Serialize once up front so that bad commands fail in the caller.
        outgoing.serialize(self.encoding)

        if queue:
            if self._aborted.is_set():
                log.debug('(%s) refusing to queue data %r as self._aborted is set', self.name, outgoing)
                return
            try:
                self._queue.put_nowait(outgoing)
            except QUEUE_FULL:
                log.error('(%s) Max SENDQ exceeded (%s), disconnecting!', self.name, self._queue.maxsize)
                self.disconnect()
                raise
        else:
            self._send(outgoing)

    def _process_queue(self):
        """Loop to process outgoing queue data."""
        while True:
            throttle_time = self.serverdata.get('throttle_time', 0)
            if self._aborted.wait(throttle_time):
                break

            data = self._queue.get()
            if data is None:
                log.debug('(%s) Stopping queue thread due to getting None as item', self.name)
                break
            elif self._aborted.is_set():
                # The _aborted flag may have changed while we were waiting for an item,
                # so check for it again.
                log.debug('(%s) Stopping queue thread since the connection is dead', self.name)
                break

            try:
                self._send(data)
            except OSError:
                log.exception("(%s) Failed to send message %r; aborting!", self.name, data)
                self.disconnect()
                break

    def wrap_message(self, command, target, text):
        """
        Wraps the given message text into multiple lines, and returns these as a list.

        The maximum length of one line is MAX_RECORD_LENGTH minus the length of
        "PRIVMSG #target :" (in bytes, after encoding).
        """
        prefixstr = "%s %s :" % (command, target)
        maxlen = MAX_RECORD_LENGTH - len(prefixstr.encode(self.encoding, 'replace'))

        if maxlen <= 0:
            raise ProtocolError('Target %r is too long to send messages to' % target)

        lines = []
        for line in text.splitlines():
            # Tabs are passed through as is, not expanded into spaces.
            wrapped = textwrap.wrap(line, width=maxlen, expand_tabs=False, replace_whitespace=False)
            for chunk in wrapped or ['']:
                # textwrap counts characters; multi-byte text needs cutting by encoded length.
                while len(chunk.encode(self.encoding, 'replace')) > maxlen:
                    cut = maxlen
                    while len(chunk[:cut].encode(self.encoding, 'replace')) > maxlen:
                        cut -= 1
                    lines.append(chunk[:cut])
                    chunk = chunk[cut:]
                lines.append(chunk)
        return [line for line in lines if line]

    def msg(self, target, text, notice=False):
        """
        Queues a PRIVMSG (or NOTICE) to the target, wrapping long text. This is the entry
        point for relays feeding messages in from other threads.
        """
        if not text:
            return

        command = 'NOTICE' if notice else 'PRIVMSG'
        for line in self.wrap_message(command, target, text):
            self.send(command, [target], line, queue=True)

"""
End to end tests: runs the clientbot protocol against a scripted IRC server on localhost.
"""

import queue
import socket
import time
import unittest
from unittest.mock import patch

from rcrelay import utils, world
from rcrelay.protocols import clientbot

TIMEOUT = 5

class FakeClientConnection():
    """Server side of one client connection."""
    def __init__(self, sock):
        self.sock = sock
        self.sock.settimeout(TIMEOUT)
        self.buffer = b''

    def readline(self):
        while b'\r\n' not in self.buffer:
            data = self.sock.recv(4096)
            if not data:
                raise EOFError('Client closed the connection')
            self.buffer += data
        line, self.buffer = self.buffer.split(b'\r\n', 1)
        return line.decode('utf-8')

    def send(self, text):
        self.sock.sendall(text.encode('utf-8') + b'\r\n')

    def close(self):
        self.sock.close()

class FakeIRCServer():
    def __init__(self):
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind(('127.0.0.1', 0))
        self.listener.listen(5)
        self.listener.settimeout(TIMEOUT)
        self.port = self.listener.getsockname()[1]

    def accept(self):
        sock, _ = self.listener.accept()
        return FakeClientConnection(sock)

    def close(self):
        self.listener.close()

class ConnectionTest(unittest.TestCase):

    def setUp(self):
        hook_patcher = patch.dict(world.hooks, clear=True)
        hook_patcher.start()
        self.addCleanup(hook_patcher.stop)

        self.server = FakeIRCServer()
        self.addCleanup(self.server.close)

        self.irc = clientbot.Class('e2e')
        self.irc.serverdata = {'ip': '127.0.0.1', 'port': self.server.port, 'nick': 'TestBot',
                               'user': 'testbot', 'realname': 'Test Bot',
                               'channels': ['#a', '#b'], 'autoconnect': 0.05}
        self.addCleanup(self.irc.stop, TIMEOUT)

        self.disconnects = queue.Queue()
        utils.add_hook(lambda irc, source, command, args: self.disconnects.put(args['was_successful']),
                       'RCRELAY_DISCONNECT')

    def accept(self):
        conn = self.server.accept()
        self.addCleanup(conn.close)
        return conn

    def test_session(self):
        messages = queue.Queue()
        utils.add_hook(lambda irc, source, command, args:
                       messages.put((source.shorten(), args['target'], args['text'])), 'PRIVMSG')

        self.irc.connect()
        conn = self.accept()
        self.assertEqual(conn.readline(), 'NICK TestBot')
        self.assertEqual(conn.readline(), 'USER testbot 0 * :Test Bot')

        conn.send(':irc.example.net NOTICE * :*** Looking up your hostname...')
        conn.send(':irc.example.net 433 * TestBot :Nickname is already in use.')
        self.assertEqual(conn.readline(), 'NICK TestBot_')

        conn.send(':irc.example.net 001 TestBot_ :Welcome to the network TestBot_')
        conn.send('PING :abc')
        self.assertEqual(conn.readline(), 'PONG :abc')

        conn.send(':irc.example.net 375 TestBot_ :- irc.example.net Message of the Day -')
        conn.send(':irc.example.net 372 TestBot_ :- Hello!')
        conn.send(':irc.example.net 376 TestBot_ :End of /MOTD command.')
        self.assertEqual(conn.readline(), 'JOIN :#a')
        self.assertEqual(conn.readline(), 'JOIN :#b')
        self.assertTrue(self.irc.connected.wait(TIMEOUT))
        self.assertTrue(self.irc.session.registered)
        self.assertEqual(self.irc.session.nickname, 'TestBot_')

        conn.send(':nick!user@host PRIVMSG #a :hello there')
        self.assertEqual(messages.get(timeout=TIMEOUT), ('nick', '#a', 'hello there'))

        # Relayed messages go out through the queue thread.
        self.irc.msg('#a', 'Page "Foo" edited by Bar')
        self.assertEqual(conn.readline(), 'PRIVMSG #a :Page "Foo" edited by Bar')

        self.irc.stop(TIMEOUT)
        self.assertFalse(self.irc.is_alive())
        with self.assertRaises((EOFError, ConnectionError)):
            conn.readline()
        self.assertTrue(self.disconnects.get(timeout=TIMEOUT))

    def test_reconnect(self):
        self.irc.connect()
        conn = self.accept()
        self.assertEqual(conn.readline(), 'NICK TestBot')
        self.assertEqual(conn.readline(), 'USER testbot 0 * :Test Bot')
        conn.send(':irc.example.net 433 * TestBot :Nickname is already in use.')
        self.assertEqual(conn.readline(), 'NICK TestBot_')

        # The server drops us before registration is done.
        conn.close()
        self.assertFalse(self.disconnects.get(timeout=TIMEOUT))

        # Nothing carries over into the new connection.
        conn = self.accept()
        self.assertEqual(conn.readline(), 'NICK TestBot')
        self.assertEqual(conn.readline(), 'USER testbot 0 * :Test Bot')

        conn.send(':irc.example.net 422 TestBot :MOTD File is missing')
        self.assertEqual(conn.readline(), 'JOIN :#a')
        self.assertEqual(conn.readline(), 'JOIN :#b')

        conn.send('ERROR :Closing Link: 127.0.0.1 (Killed)')
        self.assertTrue(self.disconnects.get(timeout=TIMEOUT))

        conn = self.accept()
        self.assertEqual(conn.readline(), 'NICK TestBot')

    def test_final_partial_record(self):
        self.irc.connect()
        conn = self.accept()
        conn.readline()
        conn.readline()

        # A record cut short by the end of the stream is still handled.
        conn.sock.sendall(b'PING :last')
        conn.sock.shutdown(socket.SHUT_WR)
        self.assertEqual(conn.readline(), 'PONG :last')
        self.assertFalse(self.disconnects.get(timeout=TIMEOUT))

    def test_connection_refused(self):
        # Find a port that nothing is listening on.
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        self.irc.serverdata['port'] = sock.getsockname()[1]
        sock.close()

        self.irc.connect()
        # Failed attempts are retried.
        self.assertFalse(self.disconnects.get(timeout=TIMEOUT))
        self.assertFalse(self.disconnects.get(timeout=TIMEOUT))

        self.irc.stop(TIMEOUT)
        self.assertFalse(self.irc.is_alive())

    def test_stop_during_reconnect_delay(self):
        self.irc.serverdata['autoconnect'] = 60
        self.irc.connect()
        conn = self.accept()
        conn.readline()
        conn.close()
        self.disconnects.get(timeout=TIMEOUT)

        started = time.monotonic()
        self.irc.stop(TIMEOUT)
        self.assertFalse(self.irc.is_alive())
        self.assertLess(time.monotonic() - started, TIMEOUT)

    def test_connect_twice(self):
        self.irc.connect()
        thread = self.irc._connect_thread
        self.irc.connect()
        self.assertIs(self.irc._connect_thread, thread)

if __name__ == '__main__':
    unittest.main()

#!/usr/bin/env python3
"""
rcrelay launcher.
"""

import signal
import sys

from rcrelay import __version__, conf, real_version, world

args = {}

def _shutdown(*_):
    """Disconnects every network and stops their reconnect loops."""
    from rcrelay.log import log

    if world.shutting_down.is_set():
        return
    log.info('Shutting down...')
    world.shutting_down.set()

    for irc in list(world.networkobjects.values()):
        irc.stop(timeout=10)

def _main():
    conf.load_conf(args.config)

    from rcrelay.log import log, setup_logging
    from rcrelay import utils

    setup_logging()
    log.info('rcrelay %s starting...', __version__)

    # Load the configured core modules (the display hooks by default).
    for name in conf.conf.get('coremods', ['display']):
        try:
            world.plugins[name] = utils._load_coremod(name)
        except Exception as e:
            log.exception('Failed to load core module %r: %s: %s', name, type(e).__name__, str(e))

    # Initialize all the networks one by one
    for network, sdata in conf.conf['servers'].items():
        protoname = sdata.get('protocol', 'clientbot')
        try:
            proto = utils._get_protocol_module(protoname)

            # Create and connect the network.
            world.networkobjects[network] = irc = proto.Class(network)
            log.debug('Connecting to network %r', network)
            irc.connect()
        except Exception:
            log.exception('(%s) Failed to connect to network %r, skipping it...',
                          network, network)
            continue

    world.started.set()

    signal.signal(signal.SIGTERM, _shutdown)
    try:
        while not world.shutting_down.wait(1):
            if not any(irc.is_alive() for irc in world.networkobjects.values()):
                log.error('No networks are running; exiting.')
                break
    except KeyboardInterrupt:
        log.info('Shutting down on Ctrl-C.')
    _shutdown()

def main():
    import argparse

    global args

    parser = argparse.ArgumentParser(description='Starts an instance of the rcrelay IRC client.')
    parser.add_argument('config', help='specifies the path to the config file (defaults to rcrelay.yml)', nargs='?', default='rcrelay.yml')
    parser.add_argument("-v", "--version", help="displays the program version and exits", action='store_true')
    args = parser.parse_args()

    if args.version:  # Display version and exit
        print('rcrelay %s (in VCS: %s)' % (__version__, real_version))
        sys.exit()

    _main()

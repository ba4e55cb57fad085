"""
world.py: Stores global variables for rcrelay, including the active IRC objects and hooks.
"""

import threading
from collections import defaultdict, deque

__all__ = ['hooks', 'networkobjects', 'plugins', 'started', 'shutting_down']

# Statekeeping for our hooks list, IRC objects and loaded core modules.
hooks = defaultdict(list)
networkobjects = {}
plugins = {}

# Trigger to be set when all IRC objects are initially created.
started = threading.Event()

# Trigger to set on shutdown. Connection loops stop reconnecting once this is set.
shutting_down = threading.Event()

# Defines messages to be logged as soon as the log system is set up, for modules like conf that are
# initialized before log. These are flushed by log.setup_logging().
_log_queue = deque()

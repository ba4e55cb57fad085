"""
structures.py - rcrelay data structures module.

This module contains custom data structures used to keep connection state.
"""

import collections.abc

from .utils import to_lower

__all__ = ['IRCCaseInsensitiveSet']


class IRCCaseInsensitiveSet(collections.abc.MutableSet):
    """
    A set storing items case insensitively, using the RFC1459 casemapping. Channel
    names like #Foo[1] and #foo{1} are the same entry here.
    """

    def __init__(self, *, data=None):
        if data is not None:
            self._data = set(self._keymangle(item) for item in data)
        else:
            self._data = set()

    _keymangle = staticmethod(to_lower)

    @classmethod
    def _from_iterable(cls, it):
        """Returns a new iterable instance given the data in 'it'."""
        return cls(data=it)

    def __repr__(self):
        return "%s(%s)" % (self.__class__.__name__, self._data)

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __contains__(self, key):
        return self._data.__contains__(self._keymangle(key))

    def add(self, key):
        self._data.add(self._keymangle(key))

    def discard(self, key):
        self._data.discard(self._keymangle(key))

    def clear(self):
        self._data.clear()

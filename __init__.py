# rcrelay version, as reported by the launcher.
__version__ = '0.3.0'
real_version = __version__

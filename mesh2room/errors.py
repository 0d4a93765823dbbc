"""Exceptions raised at the edges of the room pipeline.

The geometry core never raises for bad geometry; malformed faces are skipped
and under-calibrated calls return empty results. These are for the inputs the
caller controls: configuration files and fragment arrays."""


class ConfigError(Exception):
    pass


class FragmentError(ValueError):
    """A mesh fragment whose arrays have the wrong shape."""

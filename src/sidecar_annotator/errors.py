"""Exception types raised by the sidecar annotation engine."""


class SidecarError(Exception):
    """Base class for sidecar annotation errors."""


class BundleFormatError(SidecarError, ValueError):
    """A bundle cannot be imported at all (bad JSON, unknown format or version)."""

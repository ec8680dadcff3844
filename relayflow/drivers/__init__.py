"""Named driver resolution shared by pluggable subsystems."""

from .loader import DriverSpec, LoadedDriver, resolve_factory, resolve_named_driver

__all__ = ["DriverSpec", "LoadedDriver", "resolve_factory", "resolve_named_driver"]

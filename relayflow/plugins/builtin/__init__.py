"""Plugins shipped with relayflow."""

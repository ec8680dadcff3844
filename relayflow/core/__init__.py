"""Core configuration and logging shared by every relayflow subsystem."""

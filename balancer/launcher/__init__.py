"""Launcher for multi-process startup."""

from balancer.launcher.launcher import Launcher, LaunchStrategy

__all__ = ["Launcher", "LaunchStrategy"]

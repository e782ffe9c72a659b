"""Command line workers."""

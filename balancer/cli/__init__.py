"""Command line interface for balancer."""

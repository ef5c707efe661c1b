"""Daemon process serving the console API over a Unix socket."""

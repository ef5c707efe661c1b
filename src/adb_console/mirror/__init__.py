"""Screen mirroring: agent bootstrap, video and input."""

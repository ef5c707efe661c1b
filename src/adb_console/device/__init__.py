"""Device discovery, authentication and command execution."""

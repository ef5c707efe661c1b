"""adb-console - USB Android device console with shell and screen mirroring."""

__version__ = "0.1.0"

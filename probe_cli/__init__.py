"""Bootstrap layer of the probe-cli embedded tooling command line."""

__version__ = "0.1.0"

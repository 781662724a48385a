"""Command line interface: ``static-site deploy|plan|destroy|...``."""

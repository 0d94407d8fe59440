"""prcast: narrated walkthroughs of merged pull requests."""

__version__ = "0.1.0"

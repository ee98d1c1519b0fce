"""repopack — bundle matching local git repositories into one archive."""

__version__ = "0.1.0"

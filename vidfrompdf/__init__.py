"""Turn a pdf slide deck into a narrated video."""

__version__ = "0.1.0"

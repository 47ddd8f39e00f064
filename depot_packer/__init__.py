"""Queue Steam depot downloads, package them and describe them in BBCode."""

__version__ = "0.3.0"

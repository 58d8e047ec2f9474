"""omnicheck: one protocol front for several Python type checkers."""

__version__ = "0.1.0"

__all__ = ["__version__"]

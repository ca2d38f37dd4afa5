"""hostbridge: command broker for a polling remote execution host."""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"

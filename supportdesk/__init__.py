"""SupportDesk chat core: customer sessions, message visibility and escalation."""

from .__version__ import __version__

__all__ = ["__version__"]

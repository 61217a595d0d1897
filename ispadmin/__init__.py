"""ISP admin console support-workflow core."""

__version__ = "0.1.0"

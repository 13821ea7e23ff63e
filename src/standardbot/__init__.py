"""standard-bot: rule-driven automation for GitHub issues and pull requests."""

__version__ = "0.1.0"

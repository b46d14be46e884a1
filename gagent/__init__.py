"""GAgent - an orchestration core for an educational mini-game development agent."""

__version__ = "0.1.0"

"""DadGPT: a personal-assistant agent for goals, todos, projects and family."""

__version__ = "0.1.0"

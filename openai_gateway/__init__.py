"""OpenAI-compatible gateway in front of an Open-WebUI chat API."""

__version__ = "0.1.0"

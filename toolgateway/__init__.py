"""Tool-dispatch gateway for the Groq API."""

__version__ = "0.1.0"

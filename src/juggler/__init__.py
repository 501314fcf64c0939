"""juggler: supervise an AI coding agent over a queue of tasks."""

__version__ = "0.1.0"

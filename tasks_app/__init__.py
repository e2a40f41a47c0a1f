"""
Tagged task manager backend: tasks, tags and saved tabs over a REST API.
"""

__version__ = "0.1.0"

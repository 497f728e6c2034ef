"""
Quiz attempt delivery service.

Pushes graded quiz attempts into a Notion database through tracked,
retrying background jobs.
"""

__version__ = "1.0.0"

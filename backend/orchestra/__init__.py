"""
Orchestra
=========

Dispatches epic tasks to external coding agents, follows their progress
through webhooks and merges the resulting pull requests.
"""

__version__ = "0.1.0"

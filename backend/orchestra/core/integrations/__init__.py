"""HTTP clients for the agent platform and source control."""

from orchestra.core.integrations.cursor_agent import CursorAgentClient
from orchestra.core.integrations.github import GitHubClient

__all__ = ["CursorAgentClient", "GitHubClient"]

"""HTTP surface: agent webhooks, epics and tasks."""

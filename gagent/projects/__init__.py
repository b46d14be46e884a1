"""Projects: the task context the agent reads and mirrors status into."""

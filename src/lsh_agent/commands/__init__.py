"""CLI command groups for lsh-agent."""

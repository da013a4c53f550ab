"""Pure operations used by the agent core."""

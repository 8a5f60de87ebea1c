"""Click commands for the snapask CLI."""

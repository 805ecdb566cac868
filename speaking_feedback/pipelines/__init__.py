"""Domain pipelines executed by the HTTP controllers."""

"""Background workers: Temporal worker entry point and in-process delivery poller."""

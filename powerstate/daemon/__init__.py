"""Process entrypoint for the power daemon."""

"""Reference implementation of the remote entry service."""

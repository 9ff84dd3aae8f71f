"""Authentication session for the remote entry service."""

from stillmind.auth.session import AuthSession, FetchResponse

__all__ = ["AuthSession", "FetchResponse"]

"""Gmail API access: auth, quota pacing, REST client and message parsing."""

from .auth import GoogleTokenProvider, StaticTokenProvider, TokenProvider, run_interactive_login
from .client import GmailClient
from .parsing import (
    extract_attachments,
    extract_body,
    extract_domain,
    extract_email,
    has_attachments,
    message_to_record,
)
from .quota import TokenBucket

__all__ = [
    "GmailClient",
    "GoogleTokenProvider",
    "StaticTokenProvider",
    "TokenBucket",
    "TokenProvider",
    "extract_attachments",
    "extract_body",
    "extract_domain",
    "extract_email",
    "has_attachments",
    "message_to_record",
    "run_interactive_login",
]

"""API middleware: request gate, session cookies, CORS."""

from neosynth.api.middleware.auth import AuthKind, Principal
from neosynth.api.middleware.cors import setup_cors

__all__ = ["AuthKind", "Principal", "setup_cors"]

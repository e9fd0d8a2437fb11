"""
Sesame - Authentication Orchestration Engine

Drives a real browser through multi-step sign-in flows, clears simple
anti-automation challenges, follows delegated identity providers and
returns a portable authenticated session.
"""

__version__ = "0.1.0"
__author__ = "Sesame Team"

from sesame.core.models import Credentials, ErrorKind, Session
from sesame.flows.platforms import available_platforms, get_flow
from sesame.orchestrator.session_manager import SessionLifecycleManager

__all__ = [
    "Credentials",
    "ErrorKind",
    "Session",
    "SessionLifecycleManager",
    "available_platforms",
    "get_flow",
    "__version__",
]

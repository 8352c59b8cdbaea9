"""
Sentinel AML pipeline

Scores financial transactions for AML risk with an LLM rule evaluation and,
above a risk threshold, turns fresh regulatory publications into versioned,
reviewable compliance-rule proposals while streaming progress events.
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .logger import setup_logging
from .models import RuleHit, SentinelAlert, SentinelState, Transaction

__all__ = [
    "RuleHit",
    "SentinelAlert",
    "SentinelState",
    "Settings",
    "Transaction",
    "get_settings",
    "setup_logging",
]

# src/persona_tasks/tasks/worthiness.py

"""
Task-worthiness filter.

A cheap rule-based check (no I/O) that decides whether a message looks like real work
rather than conversational filler. The intake ORs it with the classifier verdict.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

MIN_LENGTH = 3
LONG_QUESTION_MIN_LENGTH = 12

EMOJI_ONLY = re.compile(r"^[\s\U0001F000-\U0001FAFF\u2600-\u27BF\uFE0F\u200D]+$")

# Greetings, acknowledgements, small talk, bot-identity questions. Anchored at the start so
# "thanks, now draw a cat" still matches here and is rescued by a strong positive.
NON_TASK = re.compile(
    r"^(?:hi|hello|hey|yo|sup|howdy|gm|gn|lol|lmao|haha+|ok|okay|k|yes|no|yeah|yep|nope|nah|sure|"
    r"thanks|thank you|thx|ty|cool|nice|great|awesome|wow|"
    r"good (?:morning|afternoon|evening|night)|"
    r"what(?:'s| is) your name|who are you|what are you|who made you|"
    r"how are you|how's it going|what's up|how do you feel|what do you do|"
    r"are you (?:ok|okay|a bot|real|human))\b",
    re.IGNORECASE,
)

IMAGE_GENERATION = re.compile(
    r"\b(?:create|make|draw|generate|paint|render|sketch)\b.*"
    r"\b(?:image|picture|photo|art|artwork|drawing|painting|illustration|logo|portrait|landscape|"
    r"cat|dog|sunset|rainbow|sky|dragon|tree|unicorn)s?\b",
    re.IGNORECASE,
)

BLOCKCHAIN = re.compile(
    r"\b(?:send|transfer|swap|stake|bridge|mint|pay)\b.*"
    r"\b(?:sol|eth|btc|usdc|usdt|tokens?|nfts?|coins?|lamports|wallet|address|0x[0-9a-f]+)\b"
    r"|\btransaction\b",
    re.IGNORECASE,
)

MCP = re.compile(r"\bmcp\b|\bmodel context protocol\b", re.IGNORECASE)

GENERIC_API = re.compile(r"\bapi\b|\bendpoint\b|\bwebhook\b|\bfetch\b.*\bdata\b|https?://", re.IGNORECASE)

COMMAND_AT_START = re.compile(
    r"^(?:/\w+|register|link|generate|fetch|get|start|stop|search|find|show|explain|create|delete|"
    r"update|list|add|remove|set|reset|configure|sync|connect|disconnect|send|draw|make|run|"
    r"translate|summarize|write)\b",
    re.IGNORECASE,
)

STRONG_POSITIVES = (IMAGE_GENERATION, BLOCKCHAIN, MCP, GENERIC_API, COMMAND_AT_START)

ACTION_VERBS = re.compile(
    r"\b(?:buy|sell|fetch|get|generate|create|search|find|show|explain|tell|make|send|give|check|"
    r"update|delete|add|remove|set|reset|configure|sync|connect|disconnect|write|translate|"
    r"summarize|book|schedule|remind|calculate|convert|compare|analy[sz]e)\b",
    re.IGNORECASE,
)

REQUEST_PHRASES = re.compile(
    r"\b(?:can you|could you|would you|will you|please|kindly|help me|tell me|show me|give me|"
    r"find me|fetch me|i need|i want)\b",
    re.IGNORECASE,
)

MODAL_QUESTION = re.compile(r"^(?:can|could|will|would|should|may|might|shall)\s", re.IGNORECASE)

_HAS_ALNUM = re.compile(r"\w")


def has_strong_task_signal(text: str) -> bool:
    return any(p.search(text) for p in STRONG_POSITIVES)


def should_save_as_task(text: str) -> bool:
    """Return True if the message looks like actionable work."""
    s = (text or "").strip()

    if len(s) < MIN_LENGTH or EMOJI_ONLY.match(s) or not _HAS_ALNUM.search(s):
        return False

    strong = has_strong_task_signal(s)

    if NON_TASK.match(s) and not strong:
        logger.debug("worthiness: non-task pattern %r", s[:80])
        return False

    if strong:
        return True

    if ACTION_VERBS.search(s) or REQUEST_PHRASES.search(s) or MODAL_QUESTION.match(s):
        return True

    if len(s) >= LONG_QUESTION_MIN_LENGTH and s.endswith("?"):
        return True

    return False

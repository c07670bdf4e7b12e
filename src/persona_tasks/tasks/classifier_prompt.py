# src/persona_tasks/tasks/classifier_prompt.py

"""
Classifier prompt data.

The taxonomy, rules and worked examples are plain data so they can be versioned
and reviewed independently of the code that sends them.
Bump CLASSIFIER_PROMPT_VERSION whenever any of them changes.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

CLASSIFIER_PROMPT_VERSION = "2024-06.1"

# Stands in for the agent's key inside examples; the real key is backfilled after parsing.
API_KEY_PLACEHOLDER = "<agent_api_key>"

TAXONOMY: tuple[tuple[str, str], ...] = (
    ("chat", 'General conversation or questions (e.g., "What is AI?", "What\'s your name?", "Can you tell me about cats?").'),
    (
        "api_call / image_generation",
        'Visual creation requests (e.g., "Generate image of a sunset", "Can you create a rainbow cat for me?", '
        '"Draw a colorful dog", "Please draw a neon tree").',
    ),
    ("api_call / third_party_api", 'Requests for data from an external API (e.g., "Fetch weather data").'),
    ("blockchain_tx", 'Blockchain transactions (e.g., "Send 1 SOL to address"). service_name is the chain, e.g. "solana".'),
    ("mcp_action", 'MCP protocol actions (e.g., "Run MCP protocol"). service_name is "mcp_server".'),
)

RULES: tuple[str, ...] = (
    'Classify any message requesting to create, draw, make, or generate a visual subject (e.g., "cat", "dog", '
    '"sunset", "sky", "tree", "dragon", "rainbow", "unicorn", "picture", "art") as "api_call" with service_name '
    '"image_generation", even if "image" is not mentioned.',
    'Messages asking for information or descriptions (e.g., "tell me about", "what is") are "chat" unless they '
    "involve visual creation.",
    'Conversational phrasing (e.g., "can you", "please", "for me") does not affect classification.',
    'Prioritize "image_generation" for any visual creation request, regardless of tone, qualifiers, or context.',
    "For image_generation, request_data is {\"prompt\": <the user's message>}; for everything else it is "
    "{\"command\": <the user's message>}.",
    f'For image_generation, set api_key to "{API_KEY_PLACEHOLDER}".',
)

EXAMPLES: tuple[tuple[str, dict[str, Any]], ...] = (
    (
        "Generate image of a sunset",
        {
            "task_type": "api_call",
            "service_name": "image_generation",
            "request_data": {"prompt": "Generate image of a sunset"},
            "api_key": API_KEY_PLACEHOLDER,
        },
    ),
    (
        "Can you create a rainbow cat for me?",
        {
            "task_type": "api_call",
            "service_name": "image_generation",
            "request_data": {"prompt": "Can you create a rainbow cat for me?"},
            "api_key": API_KEY_PLACEHOLDER,
        },
    ),
    (
        "Can you make a glowing dragon?",
        {
            "task_type": "api_call",
            "service_name": "image_generation",
            "request_data": {"prompt": "Can you make a glowing dragon?"},
            "api_key": API_KEY_PLACEHOLDER,
        },
    ),
    ("Can you tell me about cats?", {"task_type": "chat"}),
    (
        "Send 1 SOL to 0x123",
        {
            "task_type": "blockchain_tx",
            "service_name": "solana",
            "request_data": {"command": "Send 1 SOL to 0x123"},
        },
    ),
    (
        "Run the MCP sync action",
        {
            "task_type": "mcp_action",
            "service_name": "mcp_server",
            "request_data": {"command": "Run the MCP sync action"},
        },
    ),
    (
        "Fetch weather data for Berlin",
        {
            "task_type": "api_call",
            "service_name": "third_party_api",
            "request_data": {"command": "Fetch weather data for Berlin"},
        },
    ),
    ("What is the capital of France?", {"task_type": "chat"}),
)


def summarize_recent_tasks(recent_tasks: Iterable[Any]) -> str:
    lines = []
    for t in recent_tasks:
        command = str(getattr(t, "command", "") or "").strip()
        if not command:
            continue
        result = getattr(t, "result", None) or "Pending"
        lines.append(f"Command: {command}, Result: {result}")
    return "\n".join(lines) or "None"


def build_classifier_prompt(recent_tasks: Iterable[Any] = ()) -> str:
    parts = [
        "You are a task classifier for a chatbot. Given a user's message, determine the intended task type "
        "and reply with a single JSON object. The possible task types are:",
    ]
    parts.extend(f"- {name}: {desc}" for name, desc in TAXONOMY)

    parts.append("")
    parts.append("Instructions:")
    parts.extend(f"- {rule}" for rule in RULES)
    parts.append(
        "- The JSON object has the keys task_type, and for non-chat tasks also service_name, "
        "request_data and (image_generation only) api_key."
    )

    parts.append("")
    parts.append("Examples:")
    for i, (message, response) in enumerate(EXAMPLES, start=1):
        parts.append(f'{i}. Message: "{message}"')
        parts.append(f"   Response: {json.dumps(response, ensure_ascii=False)}")

    parts.append("")
    parts.append(f"Context (recent tasks):\n{summarize_recent_tasks(recent_tasks)}")
    parts.append("")
    parts.append("Provide the JSON response only (no explanation, no code fences).")
    return "\n".join(parts)

"""
Policy configuration for conversation heuristics.
Keyword lists and thresholds used by escalation, approval gating,
ticket classification, tool detection and prompt assembly.

Version: 1.0.0

All values can be overridden with ``POLICY_``-prefixed environment
variables (JSON for list and mapping fields). When constructed directly,
list fields also accept comma-separated strings and mapping fields
accept ``name=kw1|kw2`` pairs.
"""
from typing import Dict, List
import json
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Matched as whole words or phrases
DEFAULT_ESCALATION_KEYWORDS = [
    "human",
    "a person",
    "real person",
    "talk to agent",
    "speak to agent",
    "live agent",
    "representative",
    "customer service",
    "supervisor",
    "manager"
]

DEFAULT_FRUSTRATION_KEYWORDS = [
    "not working",
    "doesn't work",
    "wrong",
    "incorrect",
    "frustrated",
    "annoyed"
]

DEFAULT_APPROVAL_KEYWORDS = [
    "refund",
    "delete my account",
    "delete account",
    "close my account",
    "account deletion",
    "cancel my account",
    "change my billing",
    "billing change",
    "change billing",
    "update payment method",
    "remove my data",
    "delete my data",
    "data removal",
    "erase my data",
    "gdpr",
    "right to be forgotten"
]

DEFAULT_TICKET_KEYWORDS = [
    "issue",
    "problem",
    "bug",
    "error",
    "not working",
    "broken",
    "fix",
    "help me with",
    "support request",
    "complaint"
]

DEFAULT_URGENT_KEYWORDS = [
    "urgent",
    "emergency",
    "critical",
    "immediately",
    "asap",
    "down",
    "outage"
]

DEFAULT_HIGH_PRIORITY_KEYWORDS = [
    "important",
    "high priority",
    "serious",
    "significant",
    "major"
]

DEFAULT_TOOL_KEYWORDS = {
    "account_lookup": ["account", "user", "customer", "profile"],
    "order_status": ["order", "purchase", "shipping", "delivery"],
    "billing_check": ["bill", "payment", "invoice", "charge"],
    "technical_diagnostic": ["bug", "error", "not working", "broken"]
}

DEFAULT_GREETING_KEYWORDS = [
    "hello",
    "hi",
    "hey",
    "good morning",
    "good afternoon",
    "good evening"
]

DEFAULT_CAPABILITY_KEYWORDS = [
    "what can you do",
    "what do you do",
    "help me",
    "capabilities"
]

DEFAULT_CATEGORY_TOOLS = {
    "account": "account_lookup",
    "billing": "billing_check",
    "technical": "technical_diagnostic",
    "product": "product_info"
}


def _parse_list(v):
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in v.split(',') if item.strip()]
    return v


def _parse_mapping(v):
    if isinstance(v, str):
        if v.startswith('{'):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        result = {}
        for pair in v.split(','):
            if '=' not in pair:
                continue
            key, value = pair.strip().split('=', 1)
            result[key.strip()] = value.strip()
        return result
    return v


class PolicySettings(BaseSettings):
    """
    Tunable heuristics for the conversation pipeline.

    Defaults reproduce the production behaviour; tenants that need
    different thresholds override them through the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="POLICY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # ===========================
    # Escalation
    # ===========================

    escalation_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ESCALATION_KEYWORDS),
        description="Phrases that explicitly request a human"
    )

    frustration_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FRUSTRATION_KEYWORDS)
    )

    escalation_max_message_length: int = Field(
        default=200,
        ge=1,
        description="Messages longer than this escalate"
    )

    escalation_question_mark_threshold: int = Field(
        default=3,
        ge=1,
        description="Messages with at least this many '?' escalate"
    )

    frustration_window: int = Field(
        default=6,
        ge=1,
        description="Number of recent history entries inspected for frustration"
    )

    frustration_user_turn_threshold: int = Field(
        default=3,
        ge=1,
        description="Minimum user turns in the window before frustration counts"
    )

    # ===========================
    # Approval Gating
    # ===========================

    approval_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_APPROVAL_KEYWORDS),
        description="High-risk phrases that always require human sign-off"
    )

    # ===========================
    # Tickets
    # ===========================

    ticket_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TICKET_KEYWORDS)
    )

    ticket_min_length: int = Field(
        default=100,
        ge=1,
        description="Messages longer than this are treated as tickets"
    )

    ticket_followup_window: int = Field(
        default=4,
        ge=0,
        description="Recent history entries checked for an open ticket thread"
    )

    ticket_reuse_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Similarity above which a past resolution is reused"
    )

    urgent_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_URGENT_KEYWORDS)
    )

    high_priority_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_HIGH_PRIORITY_KEYWORDS)
    )

    category_tools: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_TOOLS),
        description="Ticket category keyword to tool name"
    )

    # ===========================
    # Tool Detection
    # ===========================

    tool_keywords: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_TOOL_KEYWORDS.items()}
    )

    # ===========================
    # Fallback Replies
    # ===========================

    greeting_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_GREETING_KEYWORDS),
        description="Whole words or phrases answered with the persona greeting"
    )

    capability_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_CAPABILITY_KEYWORDS)
    )

    # ===========================
    # Prompt Assembly
    # ===========================

    history_window: int = Field(
        default=10,
        ge=1,
        description="History messages sent to the generation service"
    )

    knowledge_top_k: int = Field(default=3, ge=1, le=20)
    knowledge_max_chars: int = Field(default=500, ge=1)
    tool_result_max_chars: int = Field(default=200, ge=1)
    interaction_recall_limit: int = Field(default=3, ge=0)
    faq_limit: int = Field(default=3, ge=1)

    # ===========================
    # Validators
    # ===========================

    @field_validator(
        'escalation_keywords',
        'frustration_keywords',
        'approval_keywords',
        'ticket_keywords',
        'urgent_keywords',
        'high_priority_keywords',
        'greeting_keywords',
        'capability_keywords',
        mode='before'
    )
    @classmethod
    def parse_keyword_list(cls, v):
        """Parse keyword lists from JSON or comma-separated strings."""
        return _parse_list(v)

    @field_validator('category_tools', mode='before')
    @classmethod
    def parse_category_tools(cls, v):
        return _parse_mapping(v)

    @field_validator('tool_keywords', mode='before')
    @classmethod
    def parse_tool_keywords(cls, v):
        """Parse ``tool=kw1|kw2`` pairs into keyword lists."""
        parsed = _parse_mapping(v)
        if isinstance(parsed, dict):
            return {
                name: value.split('|') if isinstance(value, str) else value
                for name, value in parsed.items()
            }
        return parsed

    @field_validator(
        'escalation_keywords',
        'frustration_keywords',
        'approval_keywords',
        'ticket_keywords',
        'urgent_keywords',
        'high_priority_keywords',
        'greeting_keywords',
        'capability_keywords'
    )
    @classmethod
    def lowercase_keywords(cls, v: List[str]) -> List[str]:
        return [kw.lower() for kw in v if kw]


policy_settings = PolicySettings()

__all__ = ['PolicySettings', 'policy_settings']

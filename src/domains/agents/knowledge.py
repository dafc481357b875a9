"""Knowledge-base lookups: by anchor, by free-text query, or by context."""

from typing import Any

import structlog

from src.db.store import FraudStore

from .step import StepContext, prior_risk_score

logger = structlog.get_logger()

DEFAULT_GUIDANCE = "No specific guidance found. Follow standard operating procedures."
ANCHOR_MISSING_GUIDANCE = "No specific guidance found. Follow standard procedures."

# keyword -> guidance, first match wins
FALLBACK_GUIDANCE = (
    ("fraud", "Follow standard fraud detection procedures. Escalate if risk score exceeds 0.7."),
    (
        "dispute",
        "Process dispute according to standard timeline. Issue provisional credit if applicable.",
    ),
    ("freeze", "Card freeze requires customer authentication. Notify customer immediately."),
)

SNIPPET_RADIUS = 50
SNIPPET_HEAD = 150
HIGH_RISK_TOPIC_THRESHOLD = 0.7


def citation(title: str, anchor: str) -> str:
    return f"[{title}]({anchor})"


def extract_snippet(content: str, query: str) -> str:
    index = content.lower().find(query.lower())
    if index == -1:
        return content[:SNIPPET_HEAD] + "..."

    start = max(0, index - SNIPPET_RADIUS)
    end = min(len(content), index + len(query) + SNIPPET_RADIUS)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(content) else ""
    return f"{prefix}{content[start:end]}{suffix}"


def fallback_guidance(query: str) -> str:
    lowered = query.lower()
    for keyword, guidance in FALLBACK_GUIDANCE:
        if keyword in lowered:
            return guidance
    return DEFAULT_GUIDANCE


def context_topics(risk_score: float | None, action: str | None) -> list[str]:
    topics = []
    if risk_score is not None and risk_score > HIGH_RISK_TOPIC_THRESHOLD:
        topics.append("fraud-detection")
    if action == "FREEZE_CARD":
        topics.append("card-freeze")
    return topics or ["customer-verification"]


async def lookup_by_anchor(store: FraudStore, anchor: str) -> dict[str, Any]:
    entry = await store.get_kb_entry(anchor)
    if entry is None:
        return {"found": False, "fallback": ANCHOR_MISSING_GUIDANCE}
    return {
        "found": True,
        "title": entry.title,
        "content": entry.content,
        "chunks": entry.chunks,
        "citation": citation(entry.title, entry.anchor),
    }


async def search_knowledge(store: FraudStore, query: str) -> dict[str, Any]:
    entries = await store.search_kb(query, limit=3)
    if not entries:
        return {"found": False, "fallback": fallback_guidance(query)}
    return {
        "found": True,
        "results": [
            {
                "title": e.title,
                "snippet": extract_snippet(e.content, query),
                "citation": citation(e.title, e.anchor),
            }
            for e in entries
        ],
    }


async def relevant_knowledge(
    store: FraudStore, risk_score: float | None, action: str | None
) -> dict[str, Any]:
    topics = context_topics(risk_score, action)
    entries = await store.list_kb_entries(topics)
    return {
        "topics": topics,
        "relevant": [
            {
                "title": e.title,
                "content": e.chunks[0] if e.chunks else e.content,
                "citation": citation(e.title, e.anchor),
            }
            for e in entries
        ],
    }


async def knowledge_step(store: FraudStore, context: StepContext, payload: Any) -> dict[str, Any]:
    params = payload if isinstance(payload, dict) else {}

    if anchor := params.get("anchor"):
        return await lookup_by_anchor(store, str(anchor))
    if query := params.get("query"):
        return await search_knowledge(store, str(query))

    risk_score = context.metadata.get("risk_score")
    if risk_score is None:
        risk_score = prior_risk_score(payload)
    logger.debug("kb_context_lookup", session_id=context.session_id, risk_score=risk_score)
    return await relevant_knowledge(store, risk_score, context.metadata.get("action"))

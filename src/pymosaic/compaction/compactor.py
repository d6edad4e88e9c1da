from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..session.models import Message
from .policy import CompactionPolicy
from .tokens import count_tokens

logger = logging.getLogger(__name__)

SUMMARY_NAME = "pymosaic_summary"
CONTEXT_MARKER = "[CONVERSATION CONTEXT - Auto-compacted to save tokens]"
HIERARCHICAL_MARKER = "[HIERARCHICAL SUMMARY"

_EXCHANGES = re.compile(
    r"(?:Recent exchanges before current context|Key conversation themes):\n([\s\S]*?)\n\[Conversation continues"
)
_LEVEL = re.compile(r"Level (\d+)")
_COUNT = re.compile(r"(\d+) (?:messages compacted|total messages)")


def is_summary(m: Message) -> bool:
    if m.role != "system":
        return False
    if m.name == SUMMARY_NAME:
        return True
    return m.content.startswith(CONTEXT_MARKER) or m.content.startswith(HIERARCHICAL_MARKER)


def summary_level(m: Message) -> int:
    match = _LEVEL.search(m.content.split("\n", 1)[0])
    return int(match.group(1)) if match else 0


@dataclass
class CompactionResult:
    messages: list[Message]
    tokens_before: int
    tokens_after: int
    messages_compacted: int


class ConversationCompactor:
    """Keeps history inside a token budget through tiered, lossy summarization.

    Tiers, in order: hierarchical collapse of accumulated summaries, simple
    summarization of older messages, aggressive shrinking of the recent
    window, and finally an emergency fallback that keeps only the leading
    system message and the last user message. The result never has a higher
    token estimate than the input, and the same input always yields the same
    output.
    """

    def __init__(self, policy: CompactionPolicy | None = None):
        self.policy = policy or CompactionPolicy()

    # -- summary construction -------------------------------------------------

    def _preview(self, text: str) -> str:
        n = self.policy.preview_chars
        head = text[:n].strip()
        return head + ("..." if len(text) > n else "")

    def create_summary(self, collapsed: Sequence[Message]) -> Message:
        parts: list[str] = []
        questions = responses = 0
        for m in collapsed:
            if m.role == "user":
                questions += 1
                parts.append(f"Q: {self._preview(m.content)}")
            elif m.role == "assistant":
                responses += 1
                parts.append(f"A: {self._preview(m.content)}")
        exchanges = "\n\n".join(parts[: self.policy.max_excerpts])
        content = (
            f"{CONTEXT_MARKER}\n"
            f"{len(collapsed)} messages compacted ({questions} questions, {responses} responses)\n"
            f"Recent exchanges before current context:\n"
            f"{exchanges}\n"
            f"[Conversation continues with recent messages below]"
        )
        return Message(role="system", content=content, name=SUMMARY_NAME, timestamp=_stamp(collapsed))

    def create_hierarchical_summary(self, summaries: Sequence[Message], level: int) -> Message:
        total = 0
        excerpts: list[str] = []
        for s in summaries:
            count = _COUNT.search(s.content)
            if count:
                total += int(count.group(1))
            block = _EXCHANGES.search(s.content)
            if block:
                excerpts.extend(e for e in block.group(1).split("\n\n") if e.strip())
        picked = [self._preview(e) for e in excerpts[: self.policy.max_hierarchical_excerpts]]
        content = (
            f"{HIERARCHICAL_MARKER} - Level {level}]\n"
            f"{len(summaries)} previous summaries consolidated ({total} total messages)\n"
            f"Key conversation themes:\n"
            + "\n\n".join(picked)
            + "\n[Conversation continues with recent context below]"
        )
        return Message(role="system", content=content, name=SUMMARY_NAME, timestamp=_stamp(summaries))

    # -- tiers ----------------------------------------------------------------

    def _collapse_summaries(self, summaries: list[Message]) -> list[Message]:
        p = self.policy
        if len(summaries) <= p.hierarchical_trigger:
            return summaries
        older, newer = summaries[: -p.summaries_kept], summaries[-p.summaries_kept :]
        level = max((summary_level(s) for s in summaries), default=0) + 1
        logger.info("hierarchical compaction of %d summaries at level %d", len(older), level)
        return [self.create_hierarchical_summary(older, level), *newer]

    def compact_if_needed(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        reserved_for_response: int,
    ) -> CompactionResult:
        p = self.policy
        original = list(messages)
        limit = max_tokens - reserved_for_response
        before = count_tokens(original)

        if before <= limit * p.trigger_ratio:
            return CompactionResult(original, before, before, 0)

        system: Optional[Message] = next((m for m in original if m.role == "system" and not is_summary(m)), None)
        summaries = self._collapse_summaries([m for m in original if is_summary(m)])
        conversation = [m for m in original if m is not system and not is_summary(m)]

        keep = max(p.min_recent, math.floor(len(conversation) * p.recent_fraction))
        recent = conversation[-keep:] if keep < len(conversation) else conversation
        old = conversation[: len(conversation) - len(recent)]

        head = [system] if system is not None else []
        candidate = head + summaries + ([self.create_summary(old)] if old else []) + recent
        after = count_tokens(candidate)

        if after > limit * p.aggressive_ratio:
            for attempt, frac in enumerate(p.shrink_fractions, start=1):
                n = max(p.min_shrunk, math.floor(len(recent) * frac))
                kept = recent[-n:] if n < len(recent) else recent
                collapsed = old + recent[: len(recent) - len(kept)]
                candidate = head + summaries + ([self.create_summary(collapsed)] if collapsed else []) + kept
                after = count_tokens(candidate)
                if after <= limit * p.target_ratio:
                    logger.warning("aggressive compaction succeeded on attempt %d", attempt)
                    break
            if after > limit:
                logger.critical(
                    "unable to fit conversation within %d tokens after aggressive compaction; "
                    "keeping only the system message and the last user message",
                    limit,
                )
                last_user = next((m for m in reversed(conversation) if m.role == "user"), None)
                candidate = head + ([last_user] if last_user is not None else [])
                after = count_tokens(candidate)

        if after > before:
            # A summary can outweigh what it replaced on tiny histories.
            return CompactionResult(original, before, before, 0)

        kept_ids = {id(m) for m in candidate}
        compacted = sum(1 for m in original if id(m) not in kept_ids)
        return CompactionResult(candidate, before, after, compacted)

    def smart_truncate(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        reserved_for_response: int,
    ) -> list[Message]:
        result = self.compact_if_needed(messages, max_tokens, reserved_for_response)
        if result.messages_compacted > 0:
            logger.info(
                "compacted %d messages: %d -> %d tokens",
                result.messages_compacted,
                result.tokens_before,
                result.tokens_after,
            )
        return result.messages


def _stamp(collapsed: Sequence[Message]) -> datetime:
    return collapsed[-1].timestamp if collapsed else datetime.fromtimestamp(0)

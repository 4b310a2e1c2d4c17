"""Prompt assembly under a token budget."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import tiktoken

from models.conversation import Message, USER
from models.knowledge import ScoredRecord
from config import HISTORY_MAX_MESSAGES, PROMPT_TOKEN_BUDGET

logger = logging.getLogger(__name__)

PERSONA_PROMPT = """You are a wise AI monk companion for the "Manifest the Unseen" app, guiding users on their manifestation and spiritual journey.

**Your Role:**
- Guide users with wisdom from manifestation principles, mindfulness, and spiritual growth
- Reference the workbook phases (10 phases: Self-Evaluation, Values & Vision, Goal Setting, etc.)
- Encourage journal reflection, meditation practice, and vision board creation
- Be compassionate, non-judgmental, and empowering
- Use metaphors and stories when helpful (Shi Heng Yi style)

**Guidelines:**
- Keep responses concise (2-4 paragraphs max)
- Ask thoughtful follow-up questions
- Reference relevant workbook exercises when appropriate
- Maintain a calm, grounding presence"""

NO_CONTEXT_TEXT = "No specific context retrieved for this query."
PASSAGE_SEPARATOR = "\n\n---\n\n"

# Role/formatting tokens the chat format adds per message
MESSAGE_TOKEN_OVERHEAD = 4


@dataclass
class AssembledPrompt:
    """System prompt plus chat messages, ready for the model."""
    system: str
    messages: List[Dict[str, str]]
    token_count: int
    passages_used: int = 0
    history_turns_used: int = 0
    over_budget: bool = False
    sources: List[str] = field(default_factory=list)


def group_turns(history: Sequence[Message]) -> List[List[Message]]:
    """Split history into turns: a user message and the replies that follow it."""
    turns: List[List[Message]] = []
    for message in history:
        if message.role == USER or not turns:
            turns.append([message])
        else:
            turns[-1].append(message)
    return turns


class ContextAssembler:
    """Builds the model prompt from persona, knowledge passages and history."""

    def __init__(
        self,
        token_counter: Optional[Callable[[str], int]] = None,
        history_max_messages: int = HISTORY_MAX_MESSAGES,
        message_overhead: int = MESSAGE_TOKEN_OVERHEAD
    ):
        """
        Args:
            token_counter: Function returning the token count of a string.
                Defaults to tiktoken's o200k_base encoding.
            history_max_messages: Most recent history messages considered at all
            message_overhead: Tokens added per chat message for role markup
        """
        if token_counter is None:
            encoder = tiktoken.get_encoding("o200k_base")
            token_counter = lambda text: len(encoder.encode(text))
        self.count_tokens = token_counter
        self.history_max_messages = history_max_messages
        self.message_overhead = message_overhead

    def assemble(
        self,
        passages: Sequence[ScoredRecord],
        history: Sequence[Message],
        persona_prompt: str,
        user_message: str,
        budget: int = PROMPT_TOKEN_BUDGET
    ) -> AssembledPrompt:
        """
        Assemble a prompt that fits within a token budget.

        Truncation is deterministic. While the prompt is over budget:
        1. Drop the oldest history turn
        2. Once history is gone, drop the lowest-scored passage
        The persona prompt and the current user message are never removed;
        if they alone exceed the budget the prompt is returned with
        over_budget set.

        Args:
            passages: Retrieved knowledge records (any order)
            history: Conversation messages in send order, oldest first
            persona_prompt: Instructions establishing the assistant's role
            user_message: The message being answered
            budget: Maximum prompt size in tokens

        Returns:
            AssembledPrompt with system text and chat messages
        """
        ranked = sorted(passages, key=lambda p: p.similarity, reverse=True)
        recent = list(history)[-self.history_max_messages:] if self.history_max_messages else []
        turns = group_turns(recent)

        while True:
            system, messages = self._render(ranked, turns, persona_prompt, user_message)
            token_count = self._measure(system, messages)
            if token_count <= budget:
                break
            if turns:
                turns.pop(0)
            elif ranked:
                ranked.pop()
            else:
                logger.warning(
                    f"Persona and user message alone use {token_count} tokens, "
                    f"over the budget of {budget}"
                )
                return AssembledPrompt(
                    system=system,
                    messages=messages,
                    token_count=token_count,
                    over_budget=True,
                )

        logger.debug(
            f"Assembled prompt: {token_count}/{budget} tokens, "
            f"{len(ranked)} passages, {len(turns)} history turns"
        )
        return AssembledPrompt(
            system=system,
            messages=messages,
            token_count=token_count,
            passages_used=len(ranked),
            history_turns_used=len(turns),
            sources=[p.record.source_label for p in ranked],
        )

    def _render(self, passages, turns, persona_prompt, user_message):
        if passages:
            context_text = PASSAGE_SEPARATOR.join(
                f"[Source: {p.record.source_label}]\n{p.record.content}" for p in passages
            )
        else:
            context_text = NO_CONTEXT_TEXT

        system = f"{persona_prompt}\n\n**Your Knowledge Base:**\n{context_text}"
        messages = [
            {"role": message.role, "content": message.content}
            for turn in turns
            for message in turn
        ]
        messages.append({"role": USER, "content": user_message})
        return system, messages

    def _measure(self, system: str, messages: List[Dict[str, str]]) -> int:
        total = self.count_tokens(system) + self.message_overhead
        for message in messages:
            total += self.count_tokens(message["content"]) + self.message_overhead
        return total

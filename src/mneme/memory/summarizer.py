"""Long-term fact extraction from evicted conversation turns."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..chat.models import Role, Variant
from .models import ASSISTANT_TOKEN, USER_TOKEN

if TYPE_CHECKING:
    from groq import AsyncGroq

logger = logging.getLogger(__name__)

TURN_SEPARATOR = "\n---\n"

SUMMARY_PROMPT = """# Summarization Assistant
You are a specialized summarization assistant that extracts only the most significant, long-term valuable information from conversations. Your purpose is to identify and record information that should be remembered for future interactions.

## Task
Extract only information that meets ALL of these criteria:
- Reveals persistent user preferences, interests, values, or traits
- Has potential relevance beyond the immediate conversation
- Would naturally be remembered by a human conversation partner

## Format
- Provide concise bullet points of key information
- Use consistent, retrievable phrasing
- Prioritize specificity over generality
- Include source context when relevant (e.g., "When discussing travel, mentioned...")
- Utilize the <user> and <assistant> tags for user and assistant placeholders

## Avoid
- Temporary states or short-term information (e.g., "user is going to the store", "user is feeling tired today")
- Obvious or common knowledge
- Conversational mechanics (e.g., "user asked for help with...")
- Speculation about the user
- Summarizing the entire conversation
- Creating empty summaries when no meaningful information is present

## Examples

### Example 1
```json
{
    "good_extraction": "<user> lives in Toronto and works as a software engineer",
    "poor_extraction": "User is currently at home"
}
```

### Example 2
```json
{
    "good_extraction": "<user> has a 5-year-old daughter named Emma who loves dinosaurs",
    "poor_extraction": "<user> needs to pick up their child from school today"
}
```

### Example 3
```json
{
    "good_extraction": "<assistant> mentioned severe peanut allergy multiple times",
    "poor_extraction": "<assistant> is hungry"
}
```"""


class SummarizationError(Exception):
    """Raised when the summarization model returns no usable text."""

    INVALID_RESPONSE = "invalid_response"

    def __init__(self, message: str = "Invalid response", reason: str = INVALID_RESPONSE) -> None:
        self.reason = reason
        super().__init__(message)


def format_transcript(history: list[Variant], user_name: str, assistant_name: str) -> str:
    """Flatten user/assistant turns into a placeholder-tokenized transcript."""
    turns = []
    for variant in history:
        if variant.role == Role.USER:
            speaker = user_name
        elif variant.role == Role.ASSISTANT:
            speaker = assistant_name
        else:
            continue
        turns.append(f"{speaker}: {variant.content}")

    transcript = TURN_SEPARATOR.join(turns)
    if user_name:
        transcript = transcript.replace(user_name, USER_TOKEN)
    if assistant_name:
        transcript = transcript.replace(assistant_name, ASSISTANT_TOKEN)
    return transcript


class Summarizer:
    """Extracts persistent facts from conversation history using the LLM."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 8192,
    ) -> None:
        self.client = llm_client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def summarize(
        self,
        history: list[Variant],
        user_name: str,
        assistant_name: str,
    ) -> str:
        """Summarize ``history`` into long-term facts.

        Returns:
            The summary, still using ``<user>``/``<assistant>`` placeholders.

        Raises:
            SummarizationError: If there is nothing to summarize or the
                model reply holds no text.
        """
        transcript = format_transcript(history, user_name, assistant_name)
        if not transcript.strip():
            raise SummarizationError("Nothing to summarize")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": transcript},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise SummarizationError()

        return content.strip()

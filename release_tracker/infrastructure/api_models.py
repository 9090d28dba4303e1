"""
Pydantic models for validating responses from the Perplexity chat API.

Only the fields the adapter reads are modelled; anything else in the
response is ignored. A response that lacks them is rejected at the
infrastructure layer before reaching the application core.
"""

from typing import List, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    """A single message of the conversation."""

    role: str
    content: Optional[str] = None


class ChatChoice(BaseModel):
    """One completion candidate."""

    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatCompletionResponse(BaseModel):
    """Represents the top-level structure of a chat completion response."""

    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[ChatChoice]
    citations: List[str] = []

    @property
    def content(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].message.content

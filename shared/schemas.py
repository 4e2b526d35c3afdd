from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["system", "user", "assistant"]
EventType = Literal["thinking", "response", "done", "error"]


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage]
    model: str = ""
    stream: bool = False
    use_persona: bool = False
    use_scaffolding: bool = False


class TokenUsage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @classmethod
    def from_counts(
        cls,
        prompt: int | None,
        completion: int | None,
        total: int | None = None,
    ) -> "TokenUsage":
        prompt = prompt or 0
        completion = completion or 0
        if total is None:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class TwoPassTokenUsage(BaseModel):
    planning: TokenUsage
    execution: TokenUsage
    total: int = 0

    @model_validator(mode="after")
    def _sum_passes(self) -> "TwoPassTokenUsage":
        self.total = self.planning.total_tokens + self.execution.total_tokens
        return self

    def combined(self) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.planning.prompt_tokens + self.execution.prompt_tokens,
            completion_tokens=self.planning.completion_tokens + self.execution.completion_tokens,
            total_tokens=self.total,
        )


class ChatResult(BaseModel):
    reply: str
    thinking: str | None = None
    tokens: TwoPassTokenUsage | TokenUsage = Field(default_factory=TokenUsage)

    @property
    def total_tokens(self) -> int:
        if isinstance(self.tokens, TwoPassTokenUsage):
            return self.tokens.total
        return self.tokens.total_tokens

    def usage(self) -> TokenUsage:
        if isinstance(self.tokens, TwoPassTokenUsage):
            return self.tokens.combined()
        return self.tokens


class StreamEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    content: str = ""

    @classmethod
    def thinking(cls, content: str) -> "StreamEvent":
        return cls(type="thinking", content=content)

    @classmethod
    def response(cls, content: str) -> "StreamEvent":
        return cls(type="response", content=content)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(type="done")

    @classmethod
    def error(cls, content: str) -> "StreamEvent":
        return cls(type="error", content=content)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")


class ConversationMessageIn(BaseModel):
    content: str = Field(min_length=1)
    model: str | None = None
    use_persona: bool = False
    use_scaffolding: bool = False
    stream: bool = False

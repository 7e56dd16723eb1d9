"""Escalating retries for the empty-turn failure mode of the completion service.

Attempt 1 resends with a recap of the last model utterance and the same tools,
attempt 2 keeps only a few safe local tools, attempt 3 offers no tools at all.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable

from journalagent.core.transcript import Message
from journalagent.tools.registry import ToolSet


FALLBACK_MESSAGE = (
    "I'm sorry, I wasn't able to put together a response this time. "
    "Please try again or rephrase your question."
)


class RecoveryStrategy(str, Enum):
    RECAP = "recap"
    REDUCED_TOOLS = "reduced_tools"
    NO_TOOLS = "no_tools"


@dataclass(slots=True, frozen=True)
class RecoveryPlan:
    attempt: int
    strategy: RecoveryStrategy
    tool_set: ToolSet
    nudge: Message
    delay_seconds: float


def _recap_nudge(previous_utterance: str) -> Message:
    if previous_utterance:
        quoted = previous_utterance if len(previous_utterance) <= 600 else previous_utterance[:600] + "..."
        recap = f'Your last message before the tool results was: "{quoted}". '
    else:
        recap = ""
    return Message.user_text(
        "Your previous reply was empty. "
        f"{recap}Continue from the tool results above and answer the user's question."
    )


def _reduced_nudge() -> Message:
    return Message.user_text(
        "Your previous reply was empty. Answer the user's question using the information gathered so far; "
        "only call one of the remaining tools if it is strictly necessary."
    )


def _plain_text_nudge() -> Message:
    return Message.user_text(
        "Your previous reply was empty. Do not call any tools. "
        "Write your final answer to the user now, in plain text, using the information already gathered."
    )


class EmptyResponseRecovery:
    def __init__(
        self,
        *,
        max_attempts: int,
        base_delay_seconds: float,
        safe_tools: Iterable[str],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max(0, int(max_attempts))
        self.base_delay_seconds = max(0.0, float(base_delay_seconds))
        self._safe_tools = frozenset(safe_tools)
        self._sleep = sleep
        self.attempts = 0
        self._last_tool_set: ToolSet | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (2 ** (attempt - 1))

    def next_plan(self, current: ToolSet, previous_utterance: str) -> RecoveryPlan | None:
        """Next escalation step, or ``None`` once the attempt budget is spent.

        Each plan offers a subset of the tools offered by the one before it.
        """

        if self.exhausted:
            return None
        self.attempts += 1
        attempt = self.attempts
        baseline = self._last_tool_set if self._last_tool_set is not None else current
        if attempt == 1:
            strategy, tool_set, nudge = RecoveryStrategy.RECAP, baseline, _recap_nudge(previous_utterance)
        elif attempt == 2:
            keep = (baseline.names & self._safe_tools) - baseline.remote_names
            strategy, tool_set, nudge = RecoveryStrategy.REDUCED_TOOLS, baseline.restricted_to(keep), _reduced_nudge()
        else:
            strategy, tool_set, nudge = RecoveryStrategy.NO_TOOLS, ToolSet(), _plain_text_nudge()
        self._last_tool_set = tool_set
        return RecoveryPlan(
            attempt=attempt,
            strategy=strategy,
            tool_set=tool_set,
            nudge=nudge,
            delay_seconds=self.delay_for(attempt),
        )

    async def wait(self, plan: RecoveryPlan) -> None:
        if plan.delay_seconds > 0:
            await self._sleep(plan.delay_seconds)

from __future__ import annotations

from typing import Iterable, Iterator, Tuple

from holocron.schemas.messages import Message, Role


class History:
    """Append-only conversation log shared by every agent in a run.

    Index 0 is the single System message carrying the run persona; it can be
    neither removed nor repeated. Entries are only ever added at the end.
    """

    def __init__(self, system_prompt: str) -> None:
        self._turns = [Message.system(system_prompt)]

    def append(self, message: Message) -> None:
        self._check(message)
        self._turns.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        """Append several messages as one unit; nothing is added if any is rejected."""
        batch = list(messages)
        for message in batch:
            self._check(message)
        self._turns.extend(batch)

    def all(self) -> Tuple[Message, ...]:
        return tuple(self._turns)

    @property
    def system(self) -> Message:
        return self._turns[0]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.all())

    @staticmethod
    def _check(message: Message) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"History only stores Message objects, got {type(message).__name__}")
        if message.role is Role.SYSTEM:
            raise ValueError("History already has its system message; it cannot be repeated")

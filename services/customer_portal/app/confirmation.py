"""Confirmation prompts guarding irreversible actions."""

from __future__ import annotations

from typing import Protocol


class ConfirmationPrompt(Protocol):
    async def confirm(self, message: str) -> bool:
        ...


class PresetConfirmation:
    """Answer every prompt with a decision taken ahead of time.

    The web layer builds one from the ``confirm`` query flag sent by the
    browser once the user accepted the dialog.
    """

    def __init__(self, decision: bool) -> None:
        self.decision = decision
        self.prompts: list[str] = []

    async def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        return self.decision


__all__ = ["ConfirmationPrompt", "PresetConfirmation"]

# src/credentials/access_policy.py — v1
"""Decides whether an OS credential-vault read may happen right now.

A read that may show a system prompt is only attempted when the global
access gate is open and the prompt policy allows it for the current
interaction. A blocked read is not an error: callers fall back to whatever
they have cached, or to nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from quotabar.config.settings import Settings
from quotabar.core.models import CredentialReadStrategy, InteractionContext, PromptPolicy

logger = logging.getLogger(__name__)

KeychainReader = Literal["experimental", "legacy"]


def may_prompt_now(
    interaction: InteractionContext,
    prompt_policy: PromptPolicy,
    access_enabled: bool = True,
) -> bool:
    """Pure gate: may a potentially prompting read run for this interaction?

    ``access_enabled=False`` wins over every policy.
    """
    if not access_enabled:
        return False
    if prompt_policy == "never":
        return False
    if prompt_policy == "only_on_user_action":
        return interaction == "foreground"
    return True


@dataclass(frozen=True)
class CredentialAccessPolicy:
    """Read-only snapshot of the keychain access preferences."""

    access_enabled: bool = True
    prompt_policy: PromptPolicy = "only_on_user_action"
    read_strategy: CredentialReadStrategy = "legacy"

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialAccessPolicy:
        return cls(
            access_enabled=not settings.keychain_access_disabled,
            prompt_policy=settings.claude_keychain_prompt_policy,
            read_strategy=settings.claude_keychain_read_strategy,
        )

    @property
    def effective_prompt_policy(self) -> PromptPolicy:
        """Policy applied to the primary reader.

        The prompt policy only governs the legacy reader; the experimental
        reader runs under the access gate alone.
        """
        if self.read_strategy == "experimental":
            return "always"
        return self.prompt_policy

    def allows(self, reader: KeychainReader, interaction: InteractionContext) -> bool:
        policy = "always" if reader == "experimental" else self.prompt_policy
        return may_prompt_now(interaction, policy, self.access_enabled)

    def readers_for(self, interaction: InteractionContext) -> list[KeychainReader]:
        """Ordered readers permitted for this interaction (empty = blocked)."""
        if not self.access_enabled:
            logger.debug("Keychain access disabled; skipping vault read")
            return []

        ordered: list[KeychainReader] = (
            ["experimental", "legacy"] if self.read_strategy == "experimental" else ["legacy"]
        )
        allowed = [r for r in ordered if self.allows(r, interaction)]
        if len(allowed) < len(ordered):
            logger.debug(
                "Prompt policy %s blocks %s reader(s) for %s interaction",
                self.prompt_policy,
                ", ".join(r for r in ordered if r not in allowed),
                interaction,
            )
        return allowed

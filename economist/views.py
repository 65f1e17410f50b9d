from __future__ import annotations

import hmac
import logging
from typing import Awaitable, Callable, Optional, Tuple

import discord

from .errors import LedgerError
from .ledger import LedgerRepository

logger = logging.getLogger("economist.views")

# (ephemeral feedback for the invoker, optional public broadcast)
ConfirmResult = Tuple[str, Optional[str]]


class ConfirmView(discord.ui.View):
    """Confirm/Cancel buttons guarding a pending ledger mutation.

    Only the user who ran the command may press the buttons. ``on_confirm``
    performs the mutation and returns the feedback and broadcast text.
    """

    def __init__(
        self,
        author_id: int,
        on_confirm: Callable[[discord.Interaction], Awaitable[ConfirmResult]],
        *,
        cancel_message: str = "Cancelled transaction. No records were updated.",
        danger: bool = False,
        timeout: float = 180,
    ):
        super().__init__(timeout=timeout)
        self.author_id = author_id
        self.on_confirm = on_confirm
        self.cancel_message = cancel_message
        if danger:
            self.confirm.style = discord.ButtonStyle.danger
            self.cancel.style = discord.ButtonStyle.primary

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message("This confirmation belongs to someone else.", ephemeral=True)
            return False
        return True

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.primary)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.stop()
        await interaction.response.edit_message(content="Working…", view=None)
        try:
            feedback, broadcast = await self.on_confirm(interaction)
        except LedgerError as e:
            await interaction.edit_original_response(content=f"Error: {e}")
            return
        await interaction.edit_original_response(content=feedback)
        if broadcast:
            await interaction.followup.send(broadcast, allowed_mentions=discord.AllowedMentions.none())

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.stop()
        await interaction.response.edit_message(content=self.cancel_message, view=None)

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item) -> None:
        logger.error("view_error item=%s user_id=%s", getattr(item, "label", item), interaction.user.id, exc_info=error)
        msg = "⚠️ Internal error while completing that action."
        if interaction.response.is_done():
            await interaction.followup.send(msg, ephemeral=True)
        else:
            await interaction.response.send_message(msg, ephemeral=True)


DATABASE_WARNING = (
    "***DANGER***\nThis command ***CANNOT BE REVERSED***\n"
    "If you click confirm, you will lose access to:\n"
    "- **All currencies, their metadata, circulation amount and reserves**\n"
    "- **All transaction history, for all currencies, forever**\n"
    "- **All current and past currency values, against their gold reserves and each other**\n"
    "Only use this command if you _absolutely_ know what you are doing\n"
    "Are you _100% sure_ you want to continue?"
)


async def _recreate(ledger: LedgerRepository, interaction: discord.Interaction) -> ConfirmResult:
    await ledger.recreate_database()
    logger.warning("database_recreate_confirmed user=%s user_id=%s", interaction.user.name, interaction.user.id)
    return (
        "Database successfully recreated",
        f"{interaction.user.mention} recreated the Economist Bot database. All stored data has been lost.",
    )


class DatabasePasswordModal(discord.ui.Modal, title="Recreate database"):
    password = discord.ui.TextInput(label="Database password", style=discord.TextStyle.short, required=True)

    def __init__(self, ledger: LedgerRepository, expected: str):
        super().__init__()
        self.ledger = ledger
        self.expected = expected

    async def on_submit(self, interaction: discord.Interaction) -> None:
        if not hmac.compare_digest(str(self.password.value), self.expected):
            logger.warning("database_recreate_bad_password user_id=%s", interaction.user.id)
            await interaction.response.send_message("Incorrect database password. Nothing was changed.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        feedback, broadcast = await _recreate(self.ledger, interaction)
        await interaction.followup.send(feedback, ephemeral=True)
        if broadcast:
            await interaction.followup.send(broadcast, allowed_mentions=discord.AllowedMentions.none())


class RecreateDatabaseView(ConfirmView):
    """Danger confirmation; asks for the database password first when one is configured."""

    def __init__(self, author_id: int, ledger: LedgerRepository, password: str):
        super().__init__(
            author_id,
            lambda interaction: _recreate(ledger, interaction),
            cancel_message="Cancelled deleting database (this is probably a good thing)",
            danger=True,
        )
        self.ledger = ledger
        self.password = password

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        if not self.password:
            await ConfirmView.confirm(self, interaction, button)
            return
        self.stop()
        await interaction.response.send_modal(DatabasePasswordModal(self.ledger, self.password))

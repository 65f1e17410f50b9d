# EconomistBot: Discord ledger of virtual currencies backed by gold reserves.
# Entry point. Commands are guild-scoped when GUILD_ID is set, global otherwise.
# The record worker and chart exporter share the client's DB pool and HTTP session.

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp
import discord
from discord import app_commands

from economist import APP_VERSION
from economist.charts import ChartExporter
from economist.commands import register_commands
from economist.config import Settings, load_settings
from economist.errors import LedgerError
from economist.ledger import LedgerRepository, create_pool
from economist.logs import configure_logging, register_loop_exception_handler
from economist.worker import WorkerMessage, request_halt, start_record_worker

logger = logging.getLogger("economist")

# the worker checks its inbox once per poll
WORKER_HALT_GRACE = 30.0


class EconomistTree(app_commands.CommandTree):
    async def on_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        if isinstance(error, app_commands.CheckFailure):
            # staff_only has already replied
            logger.info("command_check_failed command=%s user_id=%s", _command_name(interaction), interaction.user.id)
            return

        original = getattr(error, "original", error)
        if isinstance(original, LedgerError):
            logger.info("command_rejected command=%s user_id=%s reason=%s", _command_name(interaction), interaction.user.id, original)
            msg = f"Error: {original}"
        else:
            logger.error("command_failed command=%s user_id=%s", _command_name(interaction), interaction.user.id, exc_info=original)
            msg = "⚠️ Internal error while running that command. Check the bot logs for details."

        # Respond ephemerally so interactions don't hang forever
        try:
            if interaction.response.is_done():
                await interaction.followup.send(msg, ephemeral=True)
            else:
                await interaction.response.send_message(msg, ephemeral=True)
        except discord.HTTPException as e:
            logger.warning("command_error_reply_failed error=%r", e)


def _command_name(interaction: discord.Interaction) -> str:
    command = interaction.command
    return command.qualified_name if command is not None else "?"


class EconomistClient(discord.Client):
    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.members = True  # required for role detection
        super().__init__(intents=intents)
        self.settings = settings
        self.tree = EconomistTree(self)
        self.pool = None
        self.ledger: Optional[LedgerRepository] = None
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.exporter: Optional[ChartExporter] = None
        self.worker_task: Optional["asyncio.Task[None]"] = None
        self.worker_inbox: Optional["asyncio.Queue[WorkerMessage]"] = None

    @property
    def command_guild(self) -> Optional[discord.Object]:
        if self.settings.guild_id is None:
            return None
        return discord.Object(id=self.settings.guild_id)

    async def setup_hook(self) -> None:
        register_loop_exception_handler(asyncio.get_running_loop())

        self.pool = await create_pool(self.settings.database_url)
        self.ledger = LedgerRepository(self.pool)
        await self.ledger.ensure_schema()

        self.http_session = aiohttp.ClientSession()
        self.exporter = ChartExporter(
            self.ledger,
            self.http_session,
            self.settings.chart_server_url,
            timeout=self.settings.http_timeout,
        )
        self.worker_task, self.worker_inbox = start_record_worker(self.ledger, self.exporter)

        register_commands(self.tree, guild=self.command_guild)

    async def on_ready(self) -> None:
        logger.info(
            "client_ready version=%s user=%s guild_id=%s staff_role_ids=%s",
            APP_VERSION, self.user, self.settings.guild_id, sorted(self.settings.staff_role_ids),
        )
        if not self.settings.database_password:
            logger.warning("database_password_unset recreate_requires_password=false")

        guild = self.command_guild
        try:
            synced = await self.tree.sync(guild=guild)
        except discord.HTTPException as e:
            logger.error("command_sync_failed guild_id=%s error=%r", self.settings.guild_id, e)
            return
        logger.info("commands_synced count=%d scope=%s", len(synced), "guild" if guild else "global")

        if guild is not None:
            await self.delete_global_commands()

    async def delete_global_commands(self) -> None:
        """Remove global commands left behind by a previous global deployment."""
        try:
            global_cmds = await self.tree.fetch_commands()
        except discord.HTTPException as e:
            logger.warning("global_command_fetch_failed error=%r", e)
            return
        for c in global_cmds:
            try:
                await c.delete()
            except discord.HTTPException as e:
                logger.warning("global_command_delete_failed name=%s error=%r", c.name, e)
        if global_cmds:
            logger.info("global_commands_deleted count=%d", len(global_cmds))

    async def close(self) -> None:
        if self.worker_inbox is not None and self.worker_task is not None:
            request_halt(self.worker_inbox)
            try:
                await asyncio.wait_for(self.worker_task, timeout=WORKER_HALT_GRACE)
            except asyncio.TimeoutError:
                logger.warning("record_worker_halt_timeout")
                self.worker_task.cancel()
        if self.http_session is not None:
            await self.http_session.close()
        if self.pool is not None:
            await self.pool.close()
        await super().close()


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("starting version=%s", APP_VERSION)
    client = EconomistClient(settings)
    client.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()

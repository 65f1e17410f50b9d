from __future__ import annotations

import logging
import platform
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import discord
from discord import app_commands

from . import APP_VERSION
from .charts import chart_url
from .errors import InvalidAmount, LedgerError, PermissionDenied
from .formatting import (
    circulation_review,
    creation_broadcast,
    currency_description,
    render_currency_table,
    render_records_table,
    reserve_review,
    transaction_broadcast,
)
from .ledger import CurrencyData, CurrencySort, LedgerRepository, MetaField
from .views import DATABASE_WARNING, ConfirmResult, ConfirmView, RecreateDatabaseView

logger = logging.getLogger("economist.commands")

CODE = app_commands.Range[str, 3, 3]

SORT_CHOICES = [
    app_commands.Choice(name="Name", value=CurrencySort.NAME.value),
    app_commands.Choice(name="Nation/State", value=CurrencySort.STATE.value),
    app_commands.Choice(name="Currency Code", value=CurrencySort.CURRENCY_CODE.value),
    app_commands.Choice(name="Gold Reserves", value=CurrencySort.RESERVES.value),
    app_commands.Choice(name="Circulation", value=CurrencySort.CIRCULATION.value),
    app_commands.Choice(name="Value", value=CurrencySort.VALUE.value),
]


# -------------------------
# Validation helpers
# -------------------------

def normalize_code(code: str) -> str:
    c = (code or "").strip().upper()
    if len(c) != 3 or not c.isalpha():
        raise LedgerError(f"`{code}` is not a three-letter currency code")
    return c


def signed_amount(amount: int, add: bool, group: str) -> int:
    """Turn an add/remove amount into a signed delta; negative inputs are rejected."""
    if amount < 0:
        if add:
            raise InvalidAmount(
                f"Can't use negative values with `/currency {group} add`. Please use `/currency {group} remove` instead."
            )
        raise InvalidAmount(
            f"Can't use negative values with `/currency {group} remove`. Please use `/currency {group} add` instead."
        )
    return amount if add else -amount


def positive_count(number: Optional[int], default: int = 10) -> int:
    if number is None:
        return default
    if number <= 0:
        raise InvalidAmount("Number cannot be less than or equal to zero")
    return int(number)


def ensure_owner(currency: CurrencyData, user_name: str) -> None:
    if currency.owner != user_name:
        raise PermissionDenied("you are not the owner of this currency, and therefore cannot modify it")


def _ledger(interaction: discord.Interaction) -> LedgerRepository:
    return interaction.client.ledger  # type: ignore[attr-defined]


def _chart_base_url(interaction: discord.Interaction) -> str:
    return interaction.client.settings.chart_server_url  # type: ignore[attr-defined]


# -------------------------
# Staff checks
# -------------------------

async def is_staff(interaction: discord.Interaction, staff_role_ids: FrozenSet[int]) -> Tuple[bool, Dict[str, Any]]:
    """Return (is_staff, debug_dict). Uses role IDs and falls back to guild permissions."""
    member = interaction.user if isinstance(interaction.user, discord.Member) else None
    if member is None and interaction.guild is not None:
        member = interaction.guild.get_member(interaction.user.id)

    role_ids: List[int] = []
    admin = False
    manage_guild = False
    if member is not None:
        role_ids = [int(r.id) for r in getattr(member, "roles", [])]
        perms = getattr(member, "guild_permissions", None)
        if perms is not None:
            admin = bool(getattr(perms, "administrator", False))
            manage_guild = bool(getattr(perms, "manage_guild", False))

    allowed = admin or manage_guild
    if not allowed and staff_role_ids and role_ids:
        allowed = any(rid in staff_role_ids for rid in role_ids)

    debug = {
        "user_id": int(interaction.user.id),
        "guild_id": int(interaction.guild_id) if interaction.guild_id else None,
        "detected_role_ids": sorted(role_ids),
        "admin": admin,
        "manage_guild": manage_guild,
    }
    return allowed, debug


def staff_only():
    async def predicate(interaction: discord.Interaction) -> bool:
        staff_ids = interaction.client.settings.staff_role_ids  # type: ignore[attr-defined]
        ok, dbg = await is_staff(interaction, staff_ids)
        if not ok:
            logger.warning("staff_check_denied %s", " ".join(f"{k}={v}" for k, v in dbg.items()))
            msg = (
                "You do not have permission to run this staff command.\n"
                "Staff access requires **Administrator**, **Manage Server**, or a role listed in **STAFF_ROLE_IDS**."
            )
            if interaction.response.is_done():
                await interaction.followup.send(msg, ephemeral=True)
            else:
                await interaction.response.send_message(msg, ephemeral=True)
        return ok
    return app_commands.check(predicate)


# -------------------------
# /currency
# -------------------------

class CurrencyCommands(app_commands.Group):
    """Manage and view currencies and their circulation levels."""

    reserve = app_commands.Group(name="reserve", description="Manage gold reserves of a currency")
    circulation = app_commands.Group(name="circulation", description="Manage circulation amounts of a currency")
    modify = app_commands.Group(name="modify", description="Modify currency name, state, or currency code")
    database = app_commands.Group(name="database", description="Manage and recreate the Economist Bot database")

    def __init__(self):
        super().__init__(name="currency", description="Manage and view currencies and their circulation levels")

    @app_commands.command(name="create", description="Create a new currency")
    @app_commands.describe(
        code="A three-letter currency code. This must be unique.",
        name="The name of your new currency! This does *not* need to be unique.",
        state="The name of the nation or state in which this currency is based.",
        initial_circulation="The initial amount of your currency in circulation. Leave this blank if you're unsure.",
        initial_reserve="The initial amount of gold in your federal reserve. Leave this blank if you're unsure.",
    )
    async def create(
        self,
        interaction: discord.Interaction,
        code: CODE,
        name: str,
        state: str,
        initial_circulation: Optional[int] = 0,
        initial_reserve: Optional[int] = 0,
    ):
        await interaction.response.defer()
        currency = await _ledger(interaction).add_currency(
            normalize_code(code),
            name.strip(),
            state.strip(),
            max(0, initial_circulation or 0),
            max(0, initial_reserve or 0),
            interaction.user.name,
        )
        await interaction.followup.send(
            creation_broadcast(interaction.user.mention, currency),
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @app_commands.command(name="delete", description="Delete a currency from the database")
    @app_commands.describe(code="The three-letter currency code to delete.")
    async def delete(self, interaction: discord.Interaction, code: CODE):
        await interaction.response.defer(ephemeral=True)
        ledger = _ledger(interaction)
        currency = await ledger.get_currency(normalize_code(code))
        ensure_owner(currency, interaction.user.name)

        async def _confirm(itx: discord.Interaction) -> ConfirmResult:
            await ledger.remove_currency(currency.currency_code)
            return (
                f"Successfully deleted currency **{currency.currency_name}** `{currency.currency_code}`",
                f"{itx.user.mention} deleted currency **{currency.currency_name}** `{currency.currency_code}`",
            )

        view = ConfirmView(
            interaction.user.id,
            _confirm,
            cancel_message=f"Will not delete currency **{currency.currency_name}** `{currency.currency_code}`",
            danger=True,
        )
        await interaction.followup.send(
            f"Confirm you really want to delete the currency **{currency.currency_name}** "
            f"`{currency.currency_code}`?\n*This is not reversible*",
            view=view,
            ephemeral=True,
        )

    @app_commands.command(name="view", description="View detailed information about a currency")
    @app_commands.describe(code="Three-letter currency code to view")
    async def view(self, interaction: discord.Interaction, code: CODE):
        await interaction.response.defer()
        ledger = _ledger(interaction)
        currency = await ledger.get_currency(normalize_code(code))
        records = await ledger.get_recent_records(currency.currency_id, 1)
        latest = records[0] if records else None

        embed = discord.Embed(title=currency.currency_name, description=currency_description(currency, latest))
        if latest is not None:
            embed.set_image(url=chart_url(_chart_base_url(interaction), currency.currency_id, latest.record_id))
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="list", description="List currencies in circulation, optionally specifying a number")
    @app_commands.describe(number="Number of currencies to list", sort="Attribute to sort currency list by")
    @app_commands.choices(sort=SORT_CHOICES)
    async def list_(
        self,
        interaction: discord.Interaction,
        number: Optional[int] = None,
        sort: Optional[app_commands.Choice[str]] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        order = CurrencySort(sort.value) if sort else CurrencySort.NAME
        currencies = await _ledger(interaction).list_currencies(positive_count(number), order)
        await interaction.followup.send(render_currency_table(currencies, order), ephemeral=True)

    @app_commands.command(name="records", description="View past currency end-of-day records")
    @app_commands.describe(code="Three-letter currency code to view records for", number="Maximum number of records to fetch")
    async def records(self, interaction: discord.Interaction, code: CODE, number: Optional[int] = None):
        await interaction.response.defer(ephemeral=True)
        ledger = _ledger(interaction)
        currency = await ledger.get_currency(normalize_code(code))
        history = await ledger.get_recent_records(currency.currency_id, positive_count(number))
        await interaction.followup.send(render_records_table(currency, history), ephemeral=True)

    # -------------------------
    # reserve / circulation
    # -------------------------

    async def _transaction(self, interaction: discord.Interaction, code: str, amount: int, add: bool, group: str):
        await interaction.response.defer(ephemeral=True)
        ledger = _ledger(interaction)
        delta = signed_amount(amount, add, group)
        currency = await ledger.get_currency(normalize_code(code))
        ensure_owner(currency, interaction.user.name)

        async def _confirm(itx: discord.Interaction) -> ConfirmResult:
            if group == "reserve":
                txn = await ledger.reserve_modify(currency.currency_code, delta, itx.user.name)
                feedback = "Successfully completed gold reserve transaction!"
            else:
                txn = await ledger.circulation_modify(currency.currency_code, delta, itx.user.name)
                feedback = "Successfully completed currency circulation transaction!"
            updated = await ledger.get_currency(currency.currency_code)
            return feedback, transaction_broadcast(itx.user.mention, updated, txn)

        if group == "reserve":
            prompt = reserve_review(currency, delta)
            danger = False
        else:
            prompt = circulation_review(currency, delta)
            danger = delta < 0
        view = ConfirmView(interaction.user.id, _confirm, danger=danger)
        await interaction.followup.send(prompt, view=view, ephemeral=True)

    @reserve.command(name="add", description="Add gold to a currency's reserves")
    @app_commands.describe(amount="The amount of gold to add to the reserves", code="The three-letter code of the target currency")
    async def reserve_add(self, interaction: discord.Interaction, amount: int, code: CODE):
        await self._transaction(interaction, code, amount, True, "reserve")

    @reserve.command(name="remove", description="Remove gold from a currency's reserves")
    @app_commands.describe(amount="The amount of gold to remove from the reserves", code="The three-letter code of the target currency")
    async def reserve_remove(self, interaction: discord.Interaction, amount: int, code: CODE):
        await self._transaction(interaction, code, amount, False, "reserve")

    @circulation.command(name="add", description="Put money into circulation")
    @app_commands.describe(amount="The amount of money to put into circulation", code="The three-letter code of the target currency")
    async def circulation_add(self, interaction: discord.Interaction, amount: int, code: CODE):
        await self._transaction(interaction, code, amount, True, "circulation")

    @circulation.command(name="remove", description="Remove money from circulation")
    @app_commands.describe(amount="The amount of money to remove from circulation", code="The three-letter code of the target currency")
    async def circulation_remove(self, interaction: discord.Interaction, amount: int, code: CODE):
        await self._transaction(interaction, code, amount, False, "circulation")

    # -------------------------
    # modify
    # -------------------------

    async def _modify(self, interaction: discord.Interaction, code: str, meta: MetaField, value: str):
        await interaction.response.defer()
        ledger = _ledger(interaction)
        currency = await ledger.get_currency(normalize_code(code))
        ensure_owner(currency, interaction.user.name)
        if meta is MetaField.CODE:
            value = normalize_code(value)
        updated = await ledger.modify_currency_meta(currency.currency_code, meta, value.strip())

        if meta is MetaField.CODE:
            shown, change = f"**{updated.currency_name}**", f"Currency Code -> `{updated.currency_code}`"
        elif meta is MetaField.STATE:
            shown, change = f"**{updated.currency_name}**", f"Nation/State -> *{updated.state}*"
        else:
            shown, change = f"`{updated.currency_code}`", f"Currency Name -> **{updated.currency_name}**"
        await interaction.followup.send(
            f"{interaction.user.mention} modified currency {shown}:\n> {change}",
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @modify.command(name="name", description="Modify currency name")
    @app_commands.describe(code="Three-letter currency code to modify", name="New name of the currency")
    async def modify_name(self, interaction: discord.Interaction, code: CODE, name: str):
        await self._modify(interaction, code, MetaField.NAME, name)

    @modify.command(name="state", description="Modify nation/state of origin of a currency")
    @app_commands.describe(code="Three-letter currency code to modify", state="New nation/state of the currency")
    async def modify_state(self, interaction: discord.Interaction, code: CODE, state: str):
        await self._modify(interaction, code, MetaField.STATE, state)

    @modify.command(name="code", description="Modify three-letter currency code")
    @app_commands.describe(old_code="Old three-letter currency code", new_code="New three-letter currency code")
    async def modify_code(self, interaction: discord.Interaction, old_code: CODE, new_code: CODE):
        await self._modify(interaction, old_code, MetaField.CODE, new_code)

    # -------------------------
    # database
    # -------------------------

    @database.command(
        name="recreate",
        description="Recreate the entire currency database, starting from scratch. DANGER, THIS IS NOT REVERSIBLE!!!",
    )
    @staff_only()
    async def database_recreate(self, interaction: discord.Interaction):
        password = interaction.client.settings.database_password  # type: ignore[attr-defined]
        view = RecreateDatabaseView(interaction.user.id, _ledger(interaction), password)
        await interaction.response.send_message(DATABASE_WARNING, view=view, ephemeral=True)


# -------------------------
# /economist
# -------------------------

class EconomistCommands(app_commands.Group):
    def __init__(self):
        super().__init__(name="economist", description="Economist: Get version debug information")

    @app_commands.command(name="version", description="Get version and build debug information")
    async def version(self, interaction: discord.Interaction):
        await interaction.response.send_message(
            f"**Economist Bot**\nVersion `{APP_VERSION}`\n"
            f"python: `{platform.python_version()}`, discord.py: `{discord.__version__}`, on `{platform.system()}`",
            ephemeral=True,
        )

    @app_commands.command(name="ping", description="A simple ping response")
    async def ping(self, interaction: discord.Interaction):
        await interaction.response.send_message(f"Hello there, {interaction.user.name}", ephemeral=True)


def register_commands(tree: app_commands.CommandTree, guild: Optional[discord.abc.Snowflake] = None) -> None:
    tree.add_command(CurrencyCommands(), guild=guild)
    tree.add_command(EconomistCommands(), guild=guild)

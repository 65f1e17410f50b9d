from __future__ import annotations

from typing import List, Optional, Sequence

from .ledger import CurrencyData, CurrencySort, RecordData, TransactionData, compute_value

ANSI_RESET = "\u001b[0m"
ANSI_BOLD = "\u001b[1m"
ANSI_CYAN = "\u001b[36m"
ANSI_GREEN = "\u001b[1;32m"
ANSI_RED = "\u001b[1;31m"
ANSI_YELLOW = "\u001b[1;33m"
ANSI_BLUE = "\u001b[1;34m"
ANSI_MAGENTA = "\u001b[1;35m"

CIRCULATION_REMOVAL_WARNING = (
    "\n**Warning**: You must only use this command if you are *certain* that you have removed the correct "
    "amount from circulation by repossessing and destroying it.\n"
    "Using this command without doing so could result in prosecution by the Gold Standard organisation, "
    "as it will increase your currency's value illegally!"
)


def _cap_message(text: str, limit: int = 1900) -> str:
    """Cap a Discord message to avoid 2000-char hard limit. Adds ellipsis when trimmed."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    trimmed = text[: max(0, limit - 20)]
    nl = trimmed.rfind("\n")
    if nl > 200:
        trimmed = trimmed[:nl]
    return trimmed.rstrip() + "\n… _(truncated)_"


def performance(growth: int) -> str:
    if growth > 0:
        return "Gaining Value"
    if growth < 0:
        return "In Decline"
    return "Holding Steady"


def _performance_color(growth: int) -> str:
    if growth > 0:
        return ANSI_GREEN
    if growth < 0:
        return ANSI_RED
    return ANSI_BOLD


def render_currency_table(currencies: Sequence[CurrencyData], sort: CurrencySort) -> str:
    headers = {
        CurrencySort.CURRENCY_CODE: "Code",
        CurrencySort.NAME: "Currency Name",
        CurrencySort.STATE: "Nation/State",
        CurrencySort.RESERVES: "Gold Reserves",
        CurrencySort.CIRCULATION: "Circulation",
        CurrencySort.VALUE: "Value",
    }
    labels = {k: f"{ANSI_GREEN}{v}{ANSI_RESET}" if k is sort else v for k, v in headers.items()}

    lines: List[str] = ["**Currency List**", "```ansi"]
    lines.append("┏" + "━" * 36 + "┳" + "━" * 30 + "┳" + "━" * 14 + "┳" + "━" * 15 + "┳" + "━" * 17 + "┓")
    lines.append(
        f"┃{labels[CurrencySort.CURRENCY_CODE]} and {labels[CurrencySort.NAME]}{' ' * 14}"
        f"┃{labels[CurrencySort.STATE]}{' ' * 18}"
        f"┃{labels[CurrencySort.RESERVES]} "
        f"┃{labels[CurrencySort.CIRCULATION]}    "
        f"┃{labels[CurrencySort.VALUE]}{' ' * 12}┃"
    )
    lines.append("┣" + "━" * 36 + "╋" + "━" * 30 + "╋" + "━" * 14 + "╋" + "━" * 15 + "╋" + "━" * 17 + "┫")
    for c in currencies:
        lines.append(
            f"┃[{ANSI_CYAN}{c.currency_code:<3.3}{ANSI_RESET}] {ANSI_BOLD}{c.currency_name:<30.30}{ANSI_RESET}"
            f"┃{c.state:<30.30}"
            f"┃{ANSI_YELLOW}{c.reserves:>7}{ANSI_RESET} ingots"
            f"┃{ANSI_BLUE}{c.circulation:>11}{ANSI_RESET} {c.currency_code}"
            f"┃{ANSI_MAGENTA}{c.value:<8.3f}{ANSI_RESET} ingot/{c.currency_code}┃"
        )
    if not currencies:
        lines.append("┃" + "(no currencies yet)".ljust(36) + "┃" + " " * 30 + "┃" + " " * 14 + "┃" + " " * 15 + "┃" + " " * 17 + "┃")
    lines.append("┗" + "━" * 36 + "┻" + "━" * 30 + "┻" + "━" * 14 + "┻" + "━" * 15 + "┻" + "━" * 17 + "┛```")
    return _cap_message("\n".join(lines), limit=1990)


def render_records_table(currency: CurrencyData, records: Sequence[RecordData]) -> str:
    code = currency.currency_code
    lines: List[str] = [
        "```ansi",
        f"Record list for [{ANSI_CYAN}{code}{ANSI_RESET}] {ANSI_BOLD}{currency.currency_name}{ANSI_RESET}",
        "┏━━━━━━━━━━┳━━━━━━━━━━━━━━━━━┳━━━━━━━━━━━━━━━━━┳━━━━━━━━━━━━━━━━┳━━━━━━━━━━━━━━┓",
        "┃Date      ┃Value at Opening ┃Value at Closing ┃Change in Value ┃Performance   ┃",
        "┣━━━━━━━━━━╋━━━━━━━━━━━━━━━━━╋━━━━━━━━━━━━━━━━━╋━━━━━━━━━━━━━━━━╋━━━━━━━━━━━━━━┫",
    ]
    for r in records:
        color = _performance_color(r.growth)
        lines.append(
            f"┃{r.record_date.isoformat():<10.10}"
            f"┃{ANSI_MAGENTA}{r.opening_value:<5.3f}{ANSI_RESET} ingot / {code}"
            f"┃{ANSI_MAGENTA}{r.closing_value:<5.3f}{ANSI_RESET} ingot / {code}"
            f"┃{color}{r.delta_value:<+16.3f}{ANSI_RESET}"
            f"┃{color}{performance(r.growth):<14.14}{ANSI_RESET}┃"
        )
    if not records:
        lines.append(f"┃{ANSI_YELLOW}No past records available for this currency{ANSI_RESET}")
    lines.append("┗━━━━━━━━━━┻━━━━━━━━━━━━━━━━━┻━━━━━━━━━━━━━━━━━┻━━━━━━━━━━━━━━━━┻━━━━━━━━━━━━━━┛```")
    return _cap_message("\n".join(lines), limit=1990)


def currency_description(currency: CurrencyData, latest: Optional[RecordData]) -> str:
    code = currency.currency_code
    text = (
        f"> Nation/State: _{currency.state}_\n"
        f"> Reserves: `{currency.reserves} ingots`\n"
        f"> Circulation: `{currency.circulation} {code}`\n"
        f"> Value: `{currency.value:.3f} ingot / {code}`\n"
        f"> Owner: {currency.owner}"
    )
    if latest is None:
        text += f"\n```ansi\n{ANSI_YELLOW}Warning:{ANSI_RESET} No past records available for this currency```"
    else:
        text += f"\n> Last close ({latest.record_date.isoformat()}): `{latest.closing_value:.3f}` ({performance(latest.growth)})"
    return text


def reserve_review(currency: CurrencyData, amount: int) -> str:
    new_reserves = currency.reserves + amount
    new_value = compute_value(new_reserves, currency.circulation)
    return (
        "**Review gold reserve transaction**\n"
        f"> Currency: **{currency.currency_name}** `{currency.currency_code}`\n"
        f"> Nation/State: *{currency.state}*\n"
        f"> Amount: `{amount:+} ingots`\n"
        f"> New balance: `{new_reserves} ingots`\n"
        f"> New value: `{new_value:.3f} ingot / {currency.currency_code}`"
    )


def circulation_review(currency: CurrencyData, amount: int) -> str:
    code = currency.currency_code
    new_circulation = currency.circulation + amount
    new_value = compute_value(currency.reserves, new_circulation)
    text = (
        "**Review currency circulation transaction**\n"
        f"> Currency: **{currency.currency_name}** `{code}`\n"
        f"> Nation/State: *{currency.state}*\n"
        f"> Amount: `{amount:+}{code}`\n"
        f"> New balance: `{new_circulation}{code}`\n"
        f"> New value: `{new_value:.3f} ingot / {code}`"
    )
    if amount < 0:
        text += CIRCULATION_REMOVAL_WARNING
    return text


def transaction_broadcast(actor: str, currency: CurrencyData, transaction: TransactionData) -> str:
    code = currency.currency_code
    if transaction.delta_reserves is not None:
        kind = "a gold reserve"
        amount = f"{transaction.delta_reserves:+} ingots"
        balance = f"{currency.reserves} ingots"
    else:
        kind = "a currency circulation"
        amount = f"{transaction.delta_circulation:+}{code}"
        balance = f"{currency.circulation}{code}"
    return (
        f"{actor} made {kind} transaction:\n"
        f"> Currency: **{currency.currency_name}** `{code}`\n"
        f"> Nation/State: *{currency.state}*\n"
        f"> Amount: `{amount}`\n"
        f"> New balance: `{balance}`\n"
        f"> Transaction ID: `#{transaction.transaction_id:05}`"
    )


def creation_broadcast(actor: str, currency: CurrencyData) -> str:
    return (
        f"{actor} created new currency:\n"
        f"> **{currency.currency_name}** (*{currency.state}*)\n"
        f"> Currency Code: `{currency.currency_code}`\n"
        f"> Initial circulation: `{currency.circulation}{currency.currency_code}`\n"
        f"> Initial gold reserve: `{currency.reserves} ingots`"
    )

"""
Telegram HTML templates for alerts and command replies
"""

from html import escape

from config import PUMP_FUN_TOKEN_URL
from subscription_registry import SubscriptionState

SEPARATOR = "━━━━━━━━━━━━━━━━━━"

SOCIAL_PREFIXES = {
    'twitter': ('X', 'https://x.com/'),
    'telegram': ('Telegram', 'https://t.me/'),
    'website': ('Website', 'https://'),
}


def _social_link(kind: str, value: str) -> str:
    label, prefix = SOCIAL_PREFIXES[kind]
    if not value.startswith(('http://', 'https://')):
        value = prefix + value.lstrip('@/')
    return f'<a href="{escape(value, quote=True)}">{label}</a>'


def format_socials(socials: dict) -> str:
    links = [_social_link(kind, socials[kind]) for kind in SOCIAL_PREFIXES if socials.get(kind)]
    return " | ".join(links) if links else "n/a"


def format_token_message(token_info, age_seconds: int) -> str:
    mint = escape(token_info.mint)
    return "\n".join([
        "🚀 <b>New token launched on Pump.fun!</b>",
        SEPARATOR,
        f"🪙 <b>Name:</b> {escape(token_info.name)}",
        f"🔤 <b>Symbol:</b> {escape(token_info.symbol)}",
        f"💰 <b>Price:</b> ${token_info.price:.6f}",
        f"📊 <b>Liquidity:</b> ${token_info.liquidity:,.2f}",
        f"🏦 <b>Market cap:</b> ${token_info.market_cap:,.2f}",
        f"⏱️ <b>Age:</b> {age_seconds} seconds",
        SEPARATOR,
        f'🔗 <b>Token:</b> <a href="{PUMP_FUN_TOKEN_URL}/{mint}">Pump.fun</a>',
        f"🌐 <b>Socials:</b> {format_socials(token_info.socials)}",
        SEPARATOR,
        f"📝 <b>Contract:</b> <code>{mint}</code>",
        "",
        "🛑 Monitoring stopped. Tap \"Watch Pump.fun\" to start again.",
    ])


def format_status_message(state, active_count: int) -> str:
    watching = state is SubscriptionState.ACTIVE
    return "\n".join([
        "<b>System status:</b>",
        f"• Pump.fun: {'🟢 monitoring active' if watching else '🔴 monitoring inactive'}",
        f"• Pump.fun watchers: {active_count}",
    ])

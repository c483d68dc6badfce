"""Mailbox provider catalogue used to classify user addresses."""

from __future__ import annotations

from site_manager.common.constants import EmailProvider

EMAIL_PROVIDERS: dict[EmailProvider, dict] = {
    EmailProvider.gmail: {
        "display_name": "Gmail",
        "domains": ["gmail.com"],
        "smtp_host": "smtp.gmail.com",
        "smtp_port": 587,
        "app_password_required": True,
        "app_password_url": "https://myaccount.google.com/apppasswords",
    },
    EmailProvider.outlook: {
        "display_name": "Outlook/Hotmail",
        "domains": ["outlook.com", "hotmail.com", "live.com"],
        "smtp_host": "smtp-mail.outlook.com",
        "smtp_port": 587,
        "app_password_required": False,
        "app_password_url": None,
    },
    EmailProvider.yahoo: {
        "display_name": "Yahoo Mail",
        "domains": ["yahoo.com", "yahoo.co.uk", "yahoo.fr", "ymail.com"],
        "smtp_host": "smtp.mail.yahoo.com",
        "smtp_port": 587,
        "app_password_required": True,
        "app_password_url": "https://login.yahoo.com/account/security",
    },
}

_DOMAIN_INDEX: dict[str, EmailProvider] = {
    domain: provider
    for provider, info in EMAIL_PROVIDERS.items()
    for domain in info["domains"]
}


def detect_email_provider(email: str) -> EmailProvider:
    """Classify the mailbox provider from the address domain."""
    domain = email.rsplit("@", 1)[-1].strip().lower()
    return _DOMAIN_INDEX.get(domain, EmailProvider.other)

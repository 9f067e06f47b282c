"""Email templates for subscription lifecycle events.

Each kind has copy per locale; ``render`` fills the copy with HTML-escaped
arguments and wraps it in the shared layout. Unknown locales fall back to English.
"""

import html
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from taskmaster.config import settings

TRIAL_ENDED = "trial_ended"
TRIAL_ENDING_SOON = "trial_ending_soon"
TRIAL_STARTED = "trial_started"
SUBSCRIPTION_EXPIRING_SOON = "subscription_expiring_soon"
SUBSCRIPTION_EXPIRED = "subscription_expired"
SUBSCRIPTION_RENEWED = "subscription_renewed"
SUBSCRIPTION_PURCHASED = "subscription_purchased"
SUBSCRIPTION_CANCELED = "subscription_canceled"

FALLBACK_LOCALE = "en"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #0f0f0f; margin: 0; padding: 40px 20px;">
  <div style="max-width: 560px; margin: 0 auto; background: #1a1a1a; border-radius: 12px; padding: 40px; border: 1px solid #2a2a2a;">
    <h1 style="color: #6366f1; font-size: 28px; margin: 0 0 32px; text-align: center;">TaskMaster</h1>
    <h2 style="color: #ffffff; font-size: 24px; margin: 0 0 16px;">{heading}</h2>
    <p style="color: #a1a1aa; font-size: 16px; line-height: 1.6; margin: 0 0 24px;">{body}</p>
    {note_block}
    <a href="{billing_url}" style="display: inline-block; background: #6366f1; color: #ffffff; text-decoration: none; padding: 12px 24px; border-radius: 8px; font-weight: 600;">{cta}</a>
  </div>
</body>
</html>"""

_NOTE = '<p style="color: #f59e0b; font-size: 14px; margin: 0 0 24px;">{note}</p>'

# kind -> locale -> copy. Copy strings are str.format templates.
EMAIL_TEMPLATES: dict[str, dict[str, dict[str, str]]] = {
    TRIAL_ENDED: {
        "en": {
            "subject": "Your trial has ended",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} trial has ended. You are now on the free plan. Subscribe to keep your premium features.",
            "cta": "View Plans",
        },
        "lt": {
            "subject": "Bandomasis laikotarpis baigėsi",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} bandomasis laikotarpis baigėsi. Dabar naudojate nemokamą planą.",
            "cta": "Peržiūrėti planus",
        },
    },
    TRIAL_ENDING_SOON: {
        "en": {
            "subject": "Trial ending in {days_left} days!",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} trial ends on {end_date}.",
            "note_with_card": "Card on file: your plan will renew automatically.",
            "note_without_card": "No card on file: add a payment method to avoid being moved to the free plan.",
            "note_canceled": "Canceled: you will move to the free plan when your trial ends.",
            "cta": "View Subscription",
        },
        "lt": {
            "subject": "Bandomasis laikotarpis baigiasi po {days_left} d.!",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} bandomasis laikotarpis baigiasi {end_date}.",
            "note_with_card": "Kortelė prijungta: planas bus pratęstas automatiškai.",
            "note_without_card": "Nėra kortelės: pridėkite mokėjimo būdą, kad išvengtumėte perėjimo į nemokamą planą.",
            "note_canceled": "Atšaukta: pasibaigus bandomajam laikotarpiui būsite perkelti į nemokamą planą.",
            "cta": "Peržiūrėti prenumeratą",
        },
    },
    SUBSCRIPTION_EXPIRING_SOON: {
        "en": {
            "subject": "Subscription expires in {days_left} days",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} subscription expires on {end_date}.",
            "note_with_card": "Card on file: payment will be charged automatically.",
            "note_without_card": "No card on file: add a payment method to avoid being moved to the free plan.",
            "note_canceled": "Canceled: your subscription will not renew and you will move to the free plan on {end_date}.",
            "cta": "View Subscription",
        },
        "lt": {
            "subject": "Prenumerata baigiasi po {days_left} d.",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} prenumerata baigiasi {end_date}.",
            "note_with_card": "Kortelė prijungta: mokėjimas bus nuskaitytas automatiškai.",
            "note_without_card": "Nėra kortelės: pridėkite mokėjimo būdą, kad išvengtumėte perėjimo į nemokamą planą.",
            "note_canceled": "Atšaukta: prenumerata nebus pratęsta, {end_date} būsite perkelti į nemokamą planą.",
            "cta": "Peržiūrėti prenumeratą",
        },
    },
    SUBSCRIPTION_EXPIRED: {
        "en": {
            "subject": "Your subscription has expired",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} subscription has expired. You have been moved to the free plan.",
            "cta": "Renew Subscription",
        },
        "lt": {
            "subject": "Jūsų prenumerata baigėsi",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} prenumerata baigėsi ir buvote perkelti į nemokamą planą.",
            "cta": "Atnaujinti prenumeratą",
        },
    },
    SUBSCRIPTION_RENEWED: {
        "en": {
            "subject": "Your subscription has been renewed",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} subscription has been renewed automatically. Next billing date: {end_date}.",
            "cta": "View Subscription",
        },
        "lt": {
            "subject": "Jūsų prenumerata pratęsta",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} prenumerata buvo automatiškai pratęsta. Kitas mokėjimas: {end_date}.",
            "cta": "Peržiūrėti prenumeratą",
        },
    },
    TRIAL_STARTED: {
        "en": {
            "subject": "Your {plan_name} trial has started",
            "heading": "Welcome, {user_name}!",
            "body": "You have {days_left} days of {plan_name}. Your trial ends on {end_date}.",
            "cta": "Explore Features",
        },
        "lt": {
            "subject": "Jūsų {plan_name} bandomasis laikotarpis prasidėjo",
            "heading": "Sveiki, {user_name}!",
            "body": "Turite {days_left} d. {plan_name} plano. Bandomasis laikotarpis baigiasi {end_date}.",
            "cta": "Išbandyti funkcijas",
        },
    },
    SUBSCRIPTION_PURCHASED: {
        "en": {
            "subject": "Subscription activated: {plan_name}",
            "heading": "Thank you, {user_name}!",
            "body": "Your {plan_name} subscription is active. Next billing date: {end_date}.",
            "cta": "View Subscription",
        },
        "lt": {
            "subject": "Prenumerata aktyvuota: {plan_name}",
            "heading": "Ačiū, {user_name}!",
            "body": "Jūsų {plan_name} prenumerata aktyvuota. Kitas mokėjimas: {end_date}.",
            "cta": "Peržiūrėti prenumeratą",
        },
    },
    SUBSCRIPTION_CANCELED: {
        "en": {
            "subject": "Subscription canceled",
            "heading": "Hi {user_name}",
            "body": "Your {plan_name} subscription was canceled. You keep premium features until {end_date}.",
            "cta": "Resume Subscription",
        },
        "lt": {
            "subject": "Prenumerata atšaukta",
            "heading": "Sveiki, {user_name}",
            "body": "Jūsų {plan_name} prenumerata atšaukta. Premium funkcijomis galite naudotis iki {end_date}.",
            "cta": "Atnaujinti prenumeratą",
        },
    },
}


def format_date(moment: datetime, locale: str) -> str:
    """Date as shown in emails: ``March 5, 2026`` in English, ISO ``2026-03-05`` in Lithuanian."""
    if locale == "lt":
        return moment.strftime("%Y-%m-%d")
    return f"{moment:%B} {moment.day}, {moment.year}"


class _Escaped(dict):
    """Format mapping that HTML-escapes values and leaves unknown placeholders blank."""

    def __missing__(self, key: str) -> str:
        return ""

    def __getitem__(self, key: str) -> str:
        if key not in self:
            return self.__missing__(key)
        return html.escape(str(dict.__getitem__(self, key)))


def render(kind: str, locale: str, args: dict[str, Any]) -> RenderedEmail:
    """Render an email. Raises ``KeyError`` for an unknown template kind."""
    by_locale = EMAIL_TEMPLATES[kind]
    copy = by_locale.get(locale) or by_locale[FALLBACK_LOCALE]
    values = _Escaped(args)

    note = ""
    if "note_with_card" in copy:
        if args.get("cancel_at_period_end"):
            note_key = "note_canceled"
        elif args.get("has_payment_method"):
            note_key = "note_with_card"
        else:
            note_key = "note_without_card"
        note = _NOTE.format(note=copy[note_key].format_map(values))

    return RenderedEmail(
        subject=copy["subject"].format_map(values),
        html=_LAYOUT.format(
            heading=copy["heading"].format_map(values),
            body=copy["body"].format_map(values),
            note_block=note,
            cta=html.escape(copy["cta"]),
            billing_url=html.escape(f"{settings.app_url}/billing"),
        ),
    )

"""
Transactional email bodies. Every builder returns (subject, html, text).
"""
from html import escape
from typing import Tuple

from .config import settings

BRAND = "POS SaaS"


def _layout(title: str, body_html: str) -> str:
    return (
        "<!doctype html><html><body style=\"font-family:Inter,Arial,sans-serif;background:#F3F4F6;padding:24px\">"
        "<div style=\"max-width:560px;margin:0 auto;background:#FFFFFF;border-radius:8px;padding:24px\">"
        f"<h2 style=\"color:#1F2937;margin-top:0\">{escape(title)}</h2>"
        f"{body_html}"
        f"<p style=\"color:#6B7280;font-size:12px;margin-top:32px\">{escape(BRAND)}</p>"
        "</div></body></html>"
    )


def _button(url: str, label: str) -> str:
    return (
        f"<p><a href=\"{escape(url, quote=True)}\" "
        "style=\"background:#3B82F6;color:#FFFFFF;padding:10px 18px;border-radius:6px;text-decoration:none\">"
        f"{escape(label)}</a></p>"
    )


def welcome_email(*, name: str, business_name: str) -> Tuple[str, str, str]:
    subject = f"Welcome to {BRAND}"
    login_url = f"{settings.frontend_url}/login"
    html = _layout(
        f"Welcome, {name}!",
        f"<p>Your business <strong>{escape(business_name)}</strong> is ready. "
        f"Your {settings.trial_days}-day free trial starts today.</p>"
        + _button(login_url, "Open dashboard"),
    )
    text = (
        f"Welcome to {BRAND}, {name}! Your business {business_name} is ready and your "
        f"{settings.trial_days}-day free trial starts today. Log in at {login_url}"
    )
    return subject, html, text


def password_reset_email(*, name: str, token: str, minutes: int) -> Tuple[str, str, str]:
    subject = "Reset your password"
    url = f"{settings.frontend_url}/reset-password?token={token}"
    html = _layout(
        "Password reset",
        f"<p>Hi {escape(name)}, we received a request to reset your password. "
        f"The link expires in {minutes} minutes.</p>"
        + _button(url, "Choose a new password")
        + "<p>If you did not ask for this, you can ignore this email.</p>",
    )
    text = f"Hi {name}, reset your password within {minutes} minutes: {url}"
    return subject, html, text


def payment_reminder_email(*, plan_name: str, amount, currency: str, due_date) -> Tuple[str, str, str]:
    subject = "Payment Reminder - Action Required"
    due = due_date.strftime("%Y-%m-%d") if hasattr(due_date, "strftime") else str(due_date)
    billing_url = f"{settings.frontend_url}/billing"
    html = _layout(
        "Payment reminder",
        f"<p>Your <strong>{escape(plan_name)}</strong> subscription payment of "
        f"<strong>{escape(str(amount))} {escape(currency)}</strong> is due on {escape(due)}.</p>"
        "<p>Please update your payment method to avoid service interruption.</p>"
        + _button(billing_url, "Manage billing"),
    )
    text = (
        f"Payment Reminder: your {plan_name} subscription payment of {amount} {currency} is due on {due}. "
        f"Please update your payment method to avoid service interruption: {billing_url}"
    )
    return subject, html, text


def subscription_confirmation_email(*, plan_name: str, amount, currency: str, end_date) -> Tuple[str, str, str]:
    subject = f"Subscription confirmed: {plan_name}"
    until = end_date.strftime("%Y-%m-%d") if hasattr(end_date, "strftime") else str(end_date)
    html = _layout(
        "Subscription confirmed",
        f"<p>Thank you! Your <strong>{escape(plan_name)}</strong> plan is active until {escape(until)}.</p>"
        f"<p>Amount charged: {escape(str(amount))} {escape(currency)}</p>",
    )
    text = f"Your {plan_name} plan is active until {until}. Amount charged: {amount} {currency}."
    return subject, html, text


def broadcast_email(*, title: str, body: str) -> Tuple[str, str, str]:
    paragraphs = "".join(f"<p>{escape(p)}</p>" for p in body.split("\n\n") if p.strip())
    return title, _layout(title, paragraphs), body

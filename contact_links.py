from __future__ import annotations

import re
from urllib.parse import quote

from models import Business, OutreachPackage


def primary_email(business: Business) -> str:
    if business.enriched_data and business.enriched_data.emails:
        return business.enriched_data.emails[0]
    return ""


def primary_phone(business: Business) -> str:
    if business.enriched_data and business.enriched_data.phones:
        return business.enriched_data.phones[0]
    return business.phone


def mailto_link(email: str, subject: str, body: str) -> str:
    return f"mailto:{email}?subject={quote(subject)}&body={quote(body)}"


def whatsapp_link(phone: str, text: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if digits:
        return f"https://wa.me/{digits}?text={quote(text)}"
    return f"https://wa.me/?text={quote(text)}"


def tel_link(phone: str) -> str:
    return "tel:" + re.sub(r"[^\d+]", "", phone or "")


def outreach_links(business: Business, outreach: OutreachPackage) -> dict[str, str]:
    """Delivery links for the cold email, the WhatsApp message and a call."""
    phone = primary_phone(business)
    links = {
        "email": mailto_link(
            primary_email(business), outreach.cold_email.subject, outreach.cold_email.body
        ),
        "whatsapp": whatsapp_link(phone, outreach.whatsapp),
    }
    if phone:
        links["call"] = tel_link(phone)
    return links

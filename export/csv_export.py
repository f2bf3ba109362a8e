from __future__ import annotations

import csv
import io

from models import STAGE_LABELS, Business, PipelineBundle

HEADERS = [
    "Firmenname",
    "Adresse",
    "Telefon",
    "Email",
    "Website",
    "Website-Status",
    "Google Rating",
    "Bewertungen",
    "Google Maps",
    "Leistungen",
    "Social Media",
    "Stufe",
    "Vollständigkeit (%)",
    "Preview-URL",
    "Review-Score",
    "Email-Betreff",
]


def build_csv(
    businesses: list[Business], bundles: dict[str, PipelineBundle] | None = None
) -> str:
    """One row per business; pipeline columns stay empty until it has been opened."""
    bundles = bundles or {}
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(HEADERS)
    for biz in businesses:
        bundle = bundles.get(biz.id)
        if bundle is not None:
            # dashboard enrichment may be newer than the bundle's copy
            biz = (
                bundle.business.with_enrichment(biz.enriched_data)
                if biz.is_enriched
                else bundle.business
            )
        writer.writerow(_business_to_row(biz, bundle))
    return buf.getvalue()


def _business_to_row(biz: Business, bundle: PipelineBundle | None) -> list[str]:
    data = biz.enriched_data
    emails = ", ".join(data.emails) if data else ""
    services = ", ".join(data.services) if data else ""
    social = ", ".join(data.social_links) if data else ""

    stage = completeness = url = score = subject = ""
    if bundle is not None:
        stage = STAGE_LABELS[bundle.stage]
        completeness = str(bundle.completeness_score())
        url = bundle.website_url
        if bundle.review is not None:
            score = f"{bundle.review.visual_design_score:.0f}"
        if bundle.outreach is not None:
            subject = bundle.outreach.cold_email.subject

    return [
        biz.name,
        biz.address,
        _strip_leading_plus(biz.phone),
        emails,
        biz.website,
        biz.website_status.value,
        f"{biz.rating:.1f}",
        str(biz.review_count),
        biz.google_maps_uri,
        services,
        social,
        stage,
        completeness,
        url,
        score,
        subject,
    ]


def _strip_leading_plus(phone: str) -> str:
    text = phone.strip()
    if text.startswith("+"):
        return text[1:].lstrip()
    return text

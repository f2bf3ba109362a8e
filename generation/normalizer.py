"""Turn free-text model output into values of a fixed shape.

Model responses may wrap their JSON in prose or markdown fences and tend to
return objects where plain strings are expected. Everything in here is total:
bad input degrades to empty collections or fallback records, never to an
exception.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from models import (
    Business,
    ColdEmail,
    CritiquePoint,
    FollowUp,
    Objection,
    OutreachPackage,
    WebsiteReview,
    WebsiteStatus,
    new_id,
)

logger = logging.getLogger(__name__)

TEXT_KEYS = ("message", "text", "content")
LABEL_KEYS = ("point", "issue", "description", "name", "region", "state", "message")
RECOMMENDATION_KEYS = ("point", "improvement", "recommendation", "text") + LABEL_KEYS

FALLBACK_REVIEW_MESSAGE = (
    "Das KI-Review konnte nicht ausgewertet werden (Parsing-Fehler). "
    "Manuelle Prüfung empfohlen."
)
APPROVAL_THRESHOLD = 70.0

_FENCE_RE = re.compile(r"```[a-zA-Z]*")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def strip_markup_fences(text: str) -> str:
    """Remove ```html fences the model likes to put around generated pages."""
    return strip_code_fences(text)


def extract_json_span(text: str) -> str | None:
    """Return the outermost ``{...}`` or ``[...]`` span, or None."""
    if not text:
        return None
    start_obj = text.find("{")
    start_arr = text.find("[")
    if start_obj != -1 and (start_arr == -1 or start_obj < start_arr):
        end = text.rfind("}")
        return text[start_obj : end + 1] if end > start_obj else None
    if start_arr != -1:
        end = text.rfind("]")
        return text[start_arr : end + 1] if end > start_arr else None
    return None


def _parse(text: str | None, expected: type) -> Any:
    raw = text or ""
    for candidate in (raw, strip_code_fences(raw)):
        span = extract_json_span(candidate)
        if span is None:
            continue
        try:
            value = json.loads(span)
        except ValueError:
            continue
        if isinstance(value, expected):
            return value
        logger.warning(
            f"KI-Antwort hat falsche Form: erwartet {expected.__name__}, "
            f"erhalten {type(value).__name__}"
        )
        return expected()
    if raw.strip():
        logger.warning(f"Konnte KI-Antwort nicht parsen: {raw[:200]}")
    return expected()


def parse_json_object(text: str | None) -> dict:
    return _parse(text, dict)


def parse_json_array(text: str | None) -> list:
    return _parse(text, list)


# --- field coercion ---


def coerce_text(value: Any) -> str:
    """Flatten a value that should have been a plain string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in TEXT_KEYS:
            nested = value.get(key)
            if isinstance(nested, str) and nested:
                return nested
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, list):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def coerce_label(item: Any, keys: tuple[str, ...] = LABEL_KEYS) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in keys:
            nested = item.get(key)
            if isinstance(nested, str) and nested:
                return nested
        return json.dumps(item, ensure_ascii=False)
    return str(item)


def coerce_label_list(value: Any, keys: tuple[str, ...] = LABEL_KEYS) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [coerce_label(item, keys) for item in value if item is not None]


def coerce_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return default
    return default


def coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, str):
        value = re.sub(r"[^\d.]", "", value)
    return int(coerce_float(value, float(default)))


def _clamp_score(value: float) -> float:
    return max(0.0, min(100.0, value))


def _box(value: Any) -> list[float]:
    if isinstance(value, (list, tuple)) and len(value) == 4:
        numbers = [coerce_float(v, -1.0) for v in value]
        if all(0.0 <= n <= 100.0 for n in numbers):
            return numbers
    return [0.0, 0.0, 0.0, 0.0]


# --- record normalization ---


def normalize_regions(items: list) -> list[str]:
    return [label for label in coerce_label_list(items) if label.strip()]


def normalize_business(item: Any) -> Business | None:
    """Coerce one discovery result; returns None for unusable items."""
    if not isinstance(item, dict):
        return None
    name = coerce_text(item.get("name")).strip()
    if not name:
        return None
    status = coerce_text(item.get("website_status")).strip().upper()
    if status not in WebsiteStatus.__members__:
        status = WebsiteStatus.UNKNOWN.value
    return Business(
        id=coerce_text(item.get("id")).strip() or new_id(),
        name=name,
        address=coerce_text(item.get("address")),
        rating=coerce_float(item.get("rating")),
        review_count=coerce_int(item.get("review_count")),
        website_status=WebsiteStatus(status),
        description=coerce_text(item.get("description")),
        phone=coerce_text(item.get("phone")),
        website=coerce_text(item.get("website")),
        google_maps_uri=coerce_text(item.get("google_maps_uri")),
    )


def fallback_review() -> WebsiteReview:
    return WebsiteReview(
        issues=[FALLBACK_REVIEW_MESSAGE],
        critique=[CritiquePoint(point=FALLBACK_REVIEW_MESSAGE)],
        recommendations=["Ausrichtung manuell prüfen", "Mobile Darstellung prüfen"],
        is_fallback=True,
    )


def _critique_point(item: Any) -> CritiquePoint:
    if isinstance(item, str):
        return CritiquePoint(point=item)
    if isinstance(item, dict):
        point = item.get("point")
        if not isinstance(point, str) or not point:
            point = coerce_label(item)
        snippet = item.get("related_code_snippet")
        return CritiquePoint(
            point=point,
            box_2d=_box(item.get("box_2d")),
            related_code_snippet=snippet if isinstance(snippet, str) else "",
        )
    return CritiquePoint(point="Nicht identifizierter Kritikpunkt")


def normalize_review(data: dict) -> WebsiteReview:
    """Map either review variant onto the canonical 0-100 schema."""
    if not data:
        return fallback_review()

    # The short variant scores 0-10 and calls the visual score "design_score".
    short_scale = "visual_design_score" not in data and "design_score" in data
    factor = 10.0 if short_scale else 1.0
    visual = coerce_float(data.get("visual_design_score", data.get("design_score")))
    usability = coerce_float(data.get("usability_score"))
    conversion = coerce_float(data.get("conversion_score"))

    issues = coerce_label_list(data.get("issues"))
    recommendations = coerce_label_list(
        data.get("recommendations") or data.get("improvements"), RECOMMENDATION_KEYS
    )
    critique = [_critique_point(item) for item in _as_list(data.get("critique"))]
    if not critique and issues:
        critique = [CritiquePoint(point=issue) for issue in issues]

    visual = _clamp_score(visual * factor)
    approved = data.get("is_approved")
    if not isinstance(approved, bool):
        approved = visual > APPROVAL_THRESHOLD

    return WebsiteReview(
        visual_design_score=visual,
        usability_score=_clamp_score(usability * factor),
        conversion_score=_clamp_score(conversion * factor),
        strengths=coerce_label_list(data.get("strengths")),
        issues=issues,
        recommendations=recommendations,
        critique=critique,
        is_approved=approved,
    )


def fallback_outreach() -> OutreachPackage:
    return OutreachPackage(
        cold_email=ColdEmail(subject="Fehler", body="Konnte nicht generiert werden."),
        whatsapp="Fehler bei der Generierung.",
        call_script="Fehler bei der Generierung.",
        is_fallback=True,
    )


def normalize_cold_email(value: Any) -> ColdEmail:
    if isinstance(value, dict):
        return ColdEmail(
            subject=coerce_text(value.get("subject")),
            body=coerce_text(value.get("body")),
        )
    return ColdEmail(body=coerce_text(value))


def normalize_follow_ups(value: Any) -> list[FollowUp]:
    follow_ups = []
    for item in _as_list(value):
        if isinstance(item, dict):
            follow_ups.append(
                FollowUp(
                    subject=coerce_text(item.get("subject")),
                    body=coerce_text(item.get("body")),
                    delay=coerce_text(item.get("delay")),
                )
            )
        elif isinstance(item, str) and item:
            follow_ups.append(FollowUp(body=item))
    return follow_ups


def normalize_objections(value: Any) -> list[Objection]:
    objections = []
    for item in _as_list(value):
        if isinstance(item, dict):
            objections.append(
                Objection(
                    objection=coerce_text(item.get("objection")),
                    response=coerce_text(item.get("response")),
                )
            )
    return objections


def normalize_outreach(data: dict) -> OutreachPackage:
    if not data:
        return fallback_outreach()
    return OutreachPackage(
        cold_email=normalize_cold_email(data.get("cold_email")),
        whatsapp=coerce_text(data.get("whatsapp")),
        call_script=coerce_text(data.get("call_script")),
        follow_ups=normalize_follow_ups(data.get("follow_ups")),
        objections=normalize_objections(data.get("objections")),
    )


def _as_list(value: Any) -> list:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]

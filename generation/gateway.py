"""Single point of contact with the text/vision model.

Every public operation issues one completion request through OpenRouter and
fails soft: errors are logged and a typed default is returned, so callers only
have to recognise the fallback values defined here.
"""

from __future__ import annotations

import logging

from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from generation import prompts
from generation.normalizer import (
    coerce_label_list,
    coerce_text,
    fallback_outreach,
    fallback_review,
    normalize_business,
    normalize_cold_email,
    normalize_follow_ups,
    normalize_outreach,
    normalize_regions,
    normalize_review,
    parse_json_array,
    parse_json_object,
    strip_code_fences,
    strip_markup_fences,
)
from models import (
    Business,
    EnrichedData,
    OutreachOptions,
    OutreachPackage,
    OutreachSection,
    StyleOptions,
    WebsiteFilter,
    WebsiteReview,
)

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL_FAST = "google/gemini-2.5-flash"
DEFAULT_MODEL_PRO = "google/gemini-2.5-pro"

BLUEPRINT_FALLBACK = "Blueprint konnte nicht generiert werden. Bitte erneut versuchen."
MARKUP_FALLBACK = (
    "<!DOCTYPE html><html><body><h1>Fehler</h1>"
    "<p>Die Website konnte nicht generiert werden.</p></body></html>"
)

_LINK_KEYS = ("url", "link", "href", "email", "phone", "number", "name", "service", "description")


class GenerationGateway:
    def __init__(
        self,
        api_key: str,
        model_fast: str = DEFAULT_MODEL_FAST,
        model_pro: str = DEFAULT_MODEL_PRO,
        client=None,
    ):
        self.client = client or OpenAI(base_url=OPENROUTER_BASE_URL, api_key=api_key)
        self.model_fast = model_fast
        self.model_pro = model_pro

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=2, max=30))
    def _complete(
        self,
        prompt: str,
        model: str,
        system: str | None = None,
        image_b64: str | None = None,
        json_mode: bool = False,
        web_search: bool = False,
    ) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        if image_b64:
            content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{image_b64}"},
                },
            ]
        else:
            content = prompt
        messages.append({"role": "user", "content": content})

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if web_search:
            kwargs["extra_body"] = {"plugins": [{"id": "web"}]}

        response = self.client.chat.completions.create(
            model=model, messages=messages, **kwargs
        )
        return response.choices[0].message.content or ""

    # --- discovery ---

    def fetch_regions(self, country: str) -> list[str]:
        try:
            text = self._complete(prompts.regions_prompt(country), self.model_fast)
        except Exception as e:
            logger.error(f"Regionen für '{country}' konnten nicht geladen werden: {e}")
            return []
        return normalize_regions(parse_json_array(text))

    def discover_businesses(
        self,
        category: str,
        location: str,
        min_rating: float,
        limit: int = 5,
        website_filter: WebsiteFilter = WebsiteFilter.ANY,
    ) -> list[Business]:
        prompt = prompts.discovery_prompt(
            category, location, min_rating, limit, website_filter
        )
        try:
            text = self._complete(prompt, self.model_fast, web_search=True)
        except Exception as e:
            logger.error(f"Suche nach '{category}' in '{location}' fehlgeschlagen: {e}")
            return []

        items = parse_json_array(text)
        if not items:
            # Some answers wrap the list, e.g. {"businesses": [...]}
            wrapper = parse_json_object(text)
            items = next((v for v in wrapper.values() if isinstance(v, list)), [])

        businesses = [b for b in map(normalize_business, items) if b is not None]
        logger.info(f"{len(businesses)} Unternehmen für '{category}' in '{location}' gefunden")
        return businesses

    def enrich_business(self, business: Business) -> EnrichedData:
        try:
            text = self._complete(
                prompts.enrichment_prompt(business),
                self.model_fast,
                json_mode=True,
                web_search=True,
            )
        except Exception as e:
            logger.error(f"Recherche für '{business.name}' fehlgeschlagen: {e}")
            return EnrichedData()

        data = parse_json_object(text)
        payload = data.get("enriched_data", data)
        if not isinstance(payload, dict):
            return EnrichedData()
        return EnrichedData(
            social_links=coerce_label_list(payload.get("social_links"), _LINK_KEYS),
            emails=coerce_label_list(payload.get("emails"), _LINK_KEYS),
            phones=coerce_label_list(payload.get("phones"), _LINK_KEYS),
            services=coerce_label_list(payload.get("services"), _LINK_KEYS),
            media_assets=coerce_label_list(payload.get("media_assets"), _LINK_KEYS),
            extra_details=coerce_text(payload.get("extra_details")),
        )

    # --- blueprint ---

    def draft_blueprint(self, business: Business) -> str:
        try:
            text = self._complete(prompts.blueprint_prompt(business), self.model_pro)
        except Exception as e:
            logger.error(f"Blueprint für '{business.name}' fehlgeschlagen: {e}")
            return BLUEPRINT_FALLBACK
        return text.strip() or BLUEPRINT_FALLBACK

    def revise_blueprint(self, current: str, feedback: str) -> str:
        try:
            text = self._complete(
                prompts.revise_blueprint_prompt(current, feedback), self.model_pro
            )
        except Exception as e:
            logger.error(f"Blueprint-Überarbeitung fehlgeschlagen: {e}")
            return current
        return text.strip() or current

    # --- build ---

    def generate_site_markup(
        self, business: Business, blueprint: str, style: StyleOptions | None = None
    ) -> str:
        prompt = prompts.site_markup_prompt(business, blueprint, style or StyleOptions())
        try:
            text = self._complete(prompt, self.model_pro)
        except Exception as e:
            logger.error(f"Website-Generierung für '{business.name}' fehlgeschlagen: {e}")
            return MARKUP_FALLBACK
        return strip_markup_fences(text) or MARKUP_FALLBACK

    def revise_site_markup(self, markup: str, instructions: str) -> str:
        try:
            text = self._complete(
                prompts.revise_markup_prompt(markup, instructions), self.model_pro
            )
        except Exception as e:
            logger.error(f"Website-Überarbeitung fehlgeschlagen: {e}")
            return markup
        return strip_markup_fences(text) or markup

    # --- review ---

    def critique_website(
        self, url: str, screenshot: str | None = None, markup: str | None = None
    ) -> WebsiteReview:
        """Review a site from its markup or, failing that, a screenshot.

        Markup is preferred when both are given because critique points can
        then reference exact code snippets.
        """
        if not markup and not screenshot:
            raise ValueError("no content to review")

        if markup:
            prompt = prompts.critique_markup_prompt(url, markup)
            image = None
        else:
            prompt = prompts.critique_screenshot_prompt(url)
            image = screenshot

        try:
            text = self._complete(
                prompt,
                self.model_pro,
                system=prompts.CRITIQUE_SYSTEM_PROMPT,
                image_b64=image,
                json_mode=True,
            )
        except Exception as e:
            logger.error(f"Website-Review für '{url}' fehlgeschlagen: {e}")
            return fallback_review()
        return normalize_review(parse_json_object(text))

    # --- outreach ---

    def draft_outreach(
        self,
        business: Business,
        website_url: str,
        options: OutreachOptions | None = None,
    ) -> OutreachPackage:
        prompt = prompts.outreach_prompt(business, website_url, options or OutreachOptions())
        try:
            text = self._complete(prompt, self.model_pro, json_mode=True)
        except Exception as e:
            logger.error(f"Outreach für '{business.name}' fehlgeschlagen: {e}")
            return fallback_outreach()
        return normalize_outreach(parse_json_object(text))

    def revise_outreach_section(
        self,
        current: OutreachPackage,
        feedback: str,
        section: OutreachSection,
        index: int | None = None,
        business_name: str = "",
    ) -> dict:
        """Rewrite one outreach section and return only the changed part.

        The result is keyed like ``OutreachPackage`` (``cold_email``,
        ``whatsapp``, ``call_script`` or ``follow_ups``) so the caller can
        merge it over the current package. An empty dict means nothing usable
        came back.
        """
        if section == OutreachSection.FOLLOW_UP:
            if index is None or not 0 <= index < len(current.follow_ups):
                raise ValueError(f"invalid follow-up index: {index}")
            section_value = current.follow_ups[index].model_dump()
        elif section == OutreachSection.EMAIL:
            section_value = current.cold_email.model_dump()
        else:
            section_value = getattr(current, section.value)

        prompt = prompts.revise_outreach_prompt(
            business_name, section_value, feedback, section
        )
        try:
            text = self._complete(prompt, self.model_fast)
        except Exception as e:
            logger.error(f"Überarbeitung von '{section.value}' fehlgeschlagen: {e}")
            return {}

        if section in (OutreachSection.WHATSAPP, OutreachSection.SCRIPT):
            revised = _revised_text(text, section.value)
            return {section.value: revised} if revised else {}

        data = parse_json_object(text)
        data = data.get(section.value, data)
        if section == OutreachSection.EMAIL:
            email = normalize_cold_email(data)
            if not email.subject and not email.body:
                return {}
            return {section.value: email}

        revised = normalize_follow_ups([data])
        if not revised or not revised[0].body:
            return {}
        follow_ups = list(current.follow_ups)
        follow_ups[index] = revised[0]
        return {section.value: follow_ups}


def _revised_text(text: str, key: str) -> str:
    """Plain-text sections sometimes still come back as JSON."""
    data = parse_json_object(text)
    if data:
        return coerce_text(data.get(key, data)).strip()
    return strip_code_fences(text)

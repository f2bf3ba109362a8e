"""Per-business workflow: blueprint, build, review, outreach, summary.

The controller owns one ``PipelineBundle``. Every action either raises
before touching state (``PreconditionError``, ``GenerationError``) or applies
its result, writes the local cache and then upserts the affected record kind
remotely. Remote failures only show up in the returned ``SaveReport``.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field

import cache
from enrichment.business_enricher import BusinessEnricher
from generation.gateway import BLUEPRINT_FALLBACK, MARKUP_FALLBACK, GenerationGateway
from generation.prompts import review_fix_instructions
from models import (
    Business,
    OutreachOptions,
    OutreachSection,
    PipelineBundle,
    Stage,
    StyleOptions,
    utc_now,
)
from remote_store import PersistenceError, RemoteStore

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 60
PREVIEW_DOMAIN = "internal-preview.com"

RECORD_KINDS = ("business", "prompt", "website", "review", "outreach")
_KIND_LABELS = {
    "business": "Unternehmen",
    "prompt": "Blueprint",
    "website": "Website",
    "review": "Review",
    "outreach": "Outreach",
}


class PreconditionError(Exception):
    """An action was triggered without the inputs it needs."""


class GenerationError(Exception):
    def __init__(self, step: str, message: str = "Generierung fehlgeschlagen"):
        self.step = step
        self.message = message
        super().__init__(f"{step}: {message}")


@dataclass
class SaveReport:
    local_ok: bool = True
    remote_enabled: bool = False
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    discarded: bool = False

    @property
    def remote_ok(self) -> bool:
        return self.remote_enabled and bool(self.synced) and not self.failed

    @property
    def message(self) -> str:
        if self.discarded:
            return "Ergebnis verworfen: die Ansicht wurde inzwischen gewechselt."
        if not self.local_ok:
            return "Lokales Speichern fehlgeschlagen."
        if not self.remote_enabled:
            return "Lokal gespeichert (keine Remote-Datenbank konfiguriert)."
        if self.failed:
            kinds = ", ".join(_KIND_LABELS.get(k, k) for k in self.failed)
            return f"Lokal gespeichert, Remote-Sync fehlgeschlagen: {kinds}"
        if not self.synced:
            return "Lokal gespeichert."
        return "Gespeichert und synchronisiert."


def preview_url(business: Business) -> str:
    slug = re.sub(r"\s", "", business.name).lower() or business.id
    return f"{slug}.{PREVIEW_DOMAIN}"


def _absorb(bundle: PipelineBundle, business: Business) -> bool:
    """Merge enrichment and contact fields of ``business`` into the bundle's copy.

    Populated data already in the bundle is never replaced by empty values.
    Returns True when the bundle changed.
    """
    current = bundle.business
    merged = current
    if business.enriched_data is not None and not business.enriched_data.is_empty():
        merged = merged.with_enrichment(business.enriched_data)
    updates = {
        name: getattr(business, name)
        for name in ("phone", "notes", "website")
        if getattr(business, name) and not getattr(merged, name)
    }
    if updates:
        merged = merged.model_copy(update=updates)
    if merged == current:
        return False
    bundle.business = merged
    return True


def strip_data_uri(image: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present."""
    if image.startswith("data:") and "," in image:
        return image.split(",", 1)[1]
    return image


class PipelineController:
    def __init__(
        self,
        bundle: PipelineBundle,
        gateway: GenerationGateway,
        store: RemoteStore,
        enricher: BusinessEnricher | None = None,
        scraper=None,
        sync_interval: int = DEFAULT_SYNC_INTERVAL,
        clock=time.monotonic,
    ):
        self.bundle = bundle
        self.gateway = gateway
        self.store = store
        self.scraper = scraper
        self.enricher = enricher or BusinessEnricher(gateway, scraper)
        self.sync_interval = sync_interval
        self._clock = clock
        self._last_sync = clock()

    @classmethod
    def open(
        cls,
        business: Business,
        gateway: GenerationGateway,
        store: RemoteStore,
        enricher: BusinessEnricher | None = None,
        scraper=None,
        sync_interval: int = DEFAULT_SYNC_INTERVAL,
    ) -> PipelineController:
        """Resume the locally cached bundle for ``business`` or start at PROMPT."""
        bundle = cache.load_bundle(business.id)
        if bundle is None:
            bundle = PipelineBundle(business=business)
            cache.save_bundle(bundle)
        else:
            logger.info(
                f"'{business.name}': lokaler Stand geladen (Stufe {bundle.stage.value})"
            )
            if _absorb(bundle, business):
                cache.save_bundle(bundle)
        return cls(bundle, gateway, store, enricher, scraper, sync_interval)

    def refresh_business(self, business: Business) -> SaveReport | None:
        """Take over findings gathered outside the pipeline, e.g. on the dashboard.

        Returns None when ``business`` adds nothing to the bundle's copy.
        """
        if business.id != self.business.id:
            raise PreconditionError("Falsches Unternehmen für diese Pipeline")
        if not _absorb(self.bundle, business):
            return None
        return self._persist("business")

    @property
    def business(self) -> Business:
        return self.bundle.business

    @property
    def stage(self) -> Stage:
        return self.bundle.stage

    @property
    def completeness_score(self) -> int:
        return self.bundle.completeness_score()

    # --- persistence ---

    def _remote_writers(self) -> dict:
        b = self.bundle
        business_id = b.business.id
        writers = {"business": lambda: self.store.update_business(b.business)}
        if b.blueprint:
            writers["prompt"] = lambda: self.store.upsert_prompt(
                business_id, b.blueprint, b.blueprint_approved
            )
        if b.website_url or b.markup:
            writers["website"] = lambda: self.store.upsert_website(
                business_id, b.markup, b.website_url, b.screenshot
            )
        if b.review is not None:
            writers["review"] = lambda: self.store.upsert_review(business_id, b.review)
        if b.outreach is not None:
            writers["outreach"] = lambda: self.store.upsert_outreach(
                business_id, b.outreach
            )
        return writers

    def _persist(self, *kinds: str) -> SaveReport:
        self.bundle.updated_at = utc_now()
        report = SaveReport(
            local_ok=cache.save_bundle(self.bundle),
            remote_enabled=self.store.enabled,
        )
        if not self.store.enabled:
            return report

        writers = self._remote_writers()
        for kind in kinds:
            writer = writers.get(kind)
            if writer is None:
                continue
            try:
                writer()
                report.synced.append(kind)
            except PersistenceError as e:
                logger.warning(
                    f"'{self.business.name}': Remote-Sync ({kind}) fehlgeschlagen: {e}"
                )
                report.failed.append(kind)
        return report

    def save(self) -> SaveReport:
        """Manual save: local tier plus every remote record kind."""
        report = self._persist(*RECORD_KINDS)
        self._last_sync = self._clock()
        return report

    def sync(self, force: bool = False) -> SaveReport | None:
        """Periodic save; returns None while the interval has not elapsed."""
        if not force and self._clock() - self._last_sync < self.sync_interval:
            return None
        report = self.save()
        logger.info(f"'{self.business.name}': periodischer Sync: {report.message}")
        return report

    # --- guards ---

    def _require_stage(self, *stages: Stage) -> None:
        if self.bundle.stage not in stages:
            names = ", ".join(s.value for s in stages)
            raise PreconditionError(
                f"Aktion nur in Stufe {names} möglich (aktuell {self.bundle.stage.value})"
            )

    def _is_stale(self, stage: Stage, step: str) -> bool:
        if self.bundle.stage == stage:
            return False
        logger.warning(
            f"'{self.business.name}': Ergebnis von '{step}' verworfen, "
            f"Stufe ist inzwischen {self.bundle.stage.value}"
        )
        return True

    def _discarded(self) -> SaveReport:
        return SaveReport(remote_enabled=self.store.enabled, discarded=True)

    def _advance(self, stage: Stage) -> None:
        self.bundle.stage = stage
        if stage.position > self.bundle.furthest_stage.position:
            self.bundle.furthest_stage = stage

    # --- any stage ---

    def enrich(self) -> SaveReport:
        found = self.enricher.research(self.business)
        if found.is_empty():
            raise GenerationError("Recherche", "Keine zusätzlichen Daten gefunden")
        self.bundle.business = self.enricher.apply(self.business, found)
        return self._persist("business")

    def navigate_to(self, stage: Stage) -> SaveReport:
        if stage.position > self.bundle.furthest_stage.position:
            raise PreconditionError(
                f"Stufe {stage.value} wurde noch nicht erreicht"
            )
        self.bundle.stage = stage
        return self._persist()

    # --- PROMPT ---

    def draft_blueprint(self) -> SaveReport:
        self._require_stage(Stage.PROMPT)
        result = self.gateway.draft_blueprint(self.business)
        if self._is_stale(Stage.PROMPT, "Blueprint"):
            return self._discarded()
        if result == BLUEPRINT_FALLBACK:
            raise GenerationError("Blueprint")
        self.bundle.blueprint = result
        self.bundle.blueprint_approved = False
        return self._persist("prompt")

    def revise_blueprint(self, feedback: str) -> SaveReport:
        self._require_stage(Stage.PROMPT)
        if not self.bundle.blueprint.strip():
            raise PreconditionError("Bitte zuerst einen Blueprint erstellen")
        if not feedback.strip():
            raise PreconditionError("Bitte Feedback für die Überarbeitung eingeben")
        current = self.bundle.blueprint
        result = self.gateway.revise_blueprint(current, feedback)
        if self._is_stale(Stage.PROMPT, "Blueprint-Überarbeitung"):
            return self._discarded()
        if result.strip() == current.strip():
            raise GenerationError("Blueprint-Überarbeitung", "Keine Änderung erhalten")
        self.bundle.blueprint = result
        self.bundle.blueprint_approved = False
        return self._persist("prompt")

    def edit_blueprint(self, text: str) -> SaveReport:
        self._require_stage(Stage.PROMPT)
        self.bundle.blueprint = text
        self.bundle.blueprint_approved = False
        return self._persist("prompt")

    def approve_blueprint(self) -> SaveReport:
        self._require_stage(Stage.PROMPT)
        blueprint = self.bundle.blueprint.strip()
        if not blueprint or blueprint == BLUEPRINT_FALLBACK:
            raise PreconditionError("Ein Blueprint wird benötigt")
        self.bundle.blueprint_approved = True
        self._advance(Stage.BUILD)
        return self._persist("prompt")

    # --- BUILD ---

    def generate_site(self, style: StyleOptions | None = None) -> SaveReport:
        self._require_stage(Stage.BUILD)
        if not self.bundle.blueprint.strip():
            raise PreconditionError("Ohne Blueprint kann keine Website generiert werden")
        markup = self.gateway.generate_site_markup(
            self.business, self.bundle.blueprint, style or StyleOptions()
        )
        if self._is_stale(Stage.BUILD, "Website"):
            return self._discarded()
        if markup == MARKUP_FALLBACK:
            raise GenerationError("Website")
        self.bundle.markup = markup
        self.bundle.website_url = preview_url(self.business)
        return self._persist("website")

    def revise_site(self, instructions: str) -> SaveReport:
        self._require_stage(Stage.BUILD)
        return self._revise_markup(instructions, Stage.BUILD, "Website-Überarbeitung")

    def _revise_markup(self, instructions: str, stage: Stage, step: str) -> SaveReport:
        if not self.bundle.markup.strip():
            raise PreconditionError("Es gibt noch keinen Website-Code")
        if not instructions.strip():
            raise PreconditionError("Bitte Anweisungen für die Überarbeitung eingeben")
        current = self.bundle.markup
        revised = self.gateway.revise_site_markup(current, instructions)
        if self._is_stale(stage, step):
            return self._discarded()
        if revised.strip() == current.strip():
            raise GenerationError(step, "Die KI hat keine Änderungen vorgenommen")
        self.bundle.markup = revised
        return self._persist("website")

    def set_website_url(self, url: str) -> SaveReport:
        self._require_stage(Stage.BUILD)
        self.bundle.website_url = url.strip()
        return self._persist("website")

    def attach_screenshot(self, image: str, url: str | None = None) -> SaveReport:
        """Attach an uploaded screenshot (base64, optionally as data URI)."""
        self._require_stage(Stage.BUILD)
        if image.startswith("http"):
            raise PreconditionError(
                "Ein Bild-Link ist kein Screenshot. Bitte ein echtes Bild hochladen."
            )
        data = strip_data_uri(image).strip()
        if not data:
            raise PreconditionError("Leerer Screenshot")
        self.bundle.screenshot = data
        if url:
            self.bundle.website_url = url.strip()
        return self._persist("website")

    def capture_screenshot(self, url: str) -> SaveReport:
        self._require_stage(Stage.BUILD)
        if self.scraper is None:
            raise PreconditionError("Screenshot-Funktion ist nicht verfügbar")
        if not url.strip():
            raise PreconditionError("Bitte eine URL angeben")
        image = self.scraper.capture_screenshot(url.strip())
        if self._is_stale(Stage.BUILD, "Screenshot"):
            return self._discarded()
        if not image:
            raise GenerationError("Screenshot", f"{url} konnte nicht geladen werden")
        self.bundle.screenshot = image
        self.bundle.website_url = url.strip()
        return self._persist("website")

    def submit_for_review(self) -> SaveReport:
        self._require_stage(Stage.BUILD)
        report = self._critique(Stage.BUILD)
        if not report.discarded:
            self._advance(Stage.REVIEW)
            report = self._persist("review")
        return report

    def _critique(self, stage: Stage) -> SaveReport:
        b = self.bundle
        if not b.website_url or not (b.screenshot or b.markup):
            raise PreconditionError(
                "Bitte URL und Screenshot angeben (oder Website-Code generieren)"
            )
        review = self.gateway.critique_website(
            b.website_url, screenshot=b.screenshot or None, markup=b.markup or None
        )
        if self._is_stale(stage, "Review"):
            return self._discarded()
        if review.is_fallback:
            raise GenerationError("Review", "Die KI-Antwort konnte nicht ausgewertet werden")
        b.review = review
        return SaveReport(remote_enabled=self.store.enabled)

    # --- REVIEW ---

    def rerun_review(self) -> SaveReport:
        self._require_stage(Stage.REVIEW)
        report = self._critique(Stage.REVIEW)
        if report.discarded:
            return report
        return self._persist("review")

    def apply_review_fixes(self) -> SaveReport:
        """Revise the markup from the critique; the stage stays at REVIEW."""
        self._require_stage(Stage.REVIEW)
        review = self.bundle.review
        if review is None:
            raise PreconditionError("Es liegt noch kein Review vor")
        instructions = review_fix_instructions(
            [c.point for c in review.critique], review.recommendations
        )
        return self._revise_markup(instructions, Stage.REVIEW, "Automatische Korrektur")

    def approve_review(self, options: OutreachOptions | None = None) -> SaveReport:
        self._require_stage(Stage.REVIEW)
        if self.bundle.review is None:
            raise PreconditionError("Es liegt noch kein Review vor")
        report = self._draft_outreach(Stage.REVIEW, options)
        if not report.discarded:
            self._advance(Stage.OUTREACH)
            report = self._persist("outreach")
        return report

    # --- OUTREACH ---

    def _draft_outreach(self, stage: Stage, options: OutreachOptions | None) -> SaveReport:
        b = self.bundle
        if not (b.website_url or b.markup):
            raise PreconditionError("Für Outreach wird eine Website-URL benötigt")
        outreach = self.gateway.draft_outreach(
            b.business, b.website_url or preview_url(b.business), options or OutreachOptions()
        )
        if self._is_stale(stage, "Outreach"):
            return self._discarded()
        if outreach.is_fallback:
            raise GenerationError("Outreach")
        b.outreach = outreach
        return SaveReport(remote_enabled=self.store.enabled)

    def regenerate_outreach(self, options: OutreachOptions | None = None) -> SaveReport:
        self._require_stage(Stage.OUTREACH)
        report = self._draft_outreach(Stage.OUTREACH, options)
        if report.discarded:
            return report
        return self._persist("outreach")

    def revise_outreach(
        self, section: OutreachSection, feedback: str, index: int | None = None
    ) -> SaveReport:
        self._require_stage(Stage.OUTREACH)
        outreach = self.bundle.outreach
        if outreach is None:
            raise PreconditionError("Es gibt noch keine Outreach-Texte")
        if not feedback.strip():
            raise PreconditionError("Bitte Feedback für die Überarbeitung eingeben")
        if section == OutreachSection.FOLLOW_UP and (
            index is None or not 0 <= index < len(outreach.follow_ups)
        ):
            raise PreconditionError("Ungültiges Follow-up")

        partial = self.gateway.revise_outreach_section(
            outreach, feedback, section, index=index, business_name=self.business.name
        )
        if self._is_stale(Stage.OUTREACH, "Outreach-Überarbeitung"):
            return self._discarded()
        if not partial:
            raise GenerationError("Outreach-Überarbeitung")
        self.bundle.outreach = outreach.model_copy(update=partial)
        return self._persist("outreach")

    def finalize(self) -> SaveReport:
        self._require_stage(Stage.OUTREACH)
        if self.bundle.outreach is None:
            raise PreconditionError("Es gibt noch keine Outreach-Texte")
        self._advance(Stage.SUMMARY)
        return self._persist()

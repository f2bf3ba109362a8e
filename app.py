import base64
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed

import streamlit as st
import streamlit.components.v1 as components

import cache
from config import Config
from contact_links import outreach_links, primary_email, primary_phone
from discovery import SearchParams, start_session
from enrichment.business_enricher import BusinessEnricher
from export.csv_export import build_csv
from generation.gateway import GenerationGateway
from locations import CONTINENTS, countries_for, full_location
from maps_provider import get_map_provider, suggest_locations
from models import (
    STAGE_LABELS,
    STAGE_ORDER,
    Business,
    OutreachOptions,
    OutreachSection,
    Stage,
    StyleOptions,
    WebsiteFilter,
)
from pipeline import GenerationError, PipelineController, PreconditionError, SaveReport
from remote_store import PersistenceError, RemoteStore
from scrapers.outscraper_client import OutscraperService
from scrapers.website_scraper import WebsiteScraper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

st.set_page_config(page_title="MyMedia Site Pipeline", page_icon="🛠️", layout="wide")
st.title("MyMedia Site Pipeline")
st.markdown("Lokale Unternehmen finden, Demo-Website bauen, prüfen und anbieten")

# --- Config check ---
try:
    config = Config.from_env()
except ValueError as e:
    st.error(f"Konfigurationsfehler: {e}")
    st.info("Bitte `.env` Datei mit den erforderlichen API-Keys anlegen (siehe `.env.example`).")
    st.stop()

FILTER_LABELS = {
    WebsiteFilter.NO_WEBSITE: "Keine Website",
    WebsiteFilter.POOR_WEBSITE: "Keine oder schwache Website",
    WebsiteFilter.ANY: "Alle",
}
DESIGN_STYLES = ["Modern Professional", "Minimalist", "Bold & Colorful", "Elegant Luxury", "Playful"]
WEBSITE_TYPES = ["Landing Page", "Business Website", "Portfolio", "Online Menu", "Booking Site"]
MAX_WORKERS = 4
REMOTE_RECORD_LABELS = {
    "prompts": "Blueprint",
    "websites": "Website",
    "reviews": "Review",
    "outreach": "Outreach",
}


@st.cache_resource
def get_gateway(api_key: str, model_fast: str, model_pro: str) -> GenerationGateway:
    return GenerationGateway(api_key, model_fast, model_pro)


@st.cache_resource
def get_store(database_url: str) -> RemoteStore:
    return RemoteStore(database_url)


@st.cache_resource
def get_scraper() -> WebsiteScraper:
    return WebsiteScraper()


@st.cache_data(ttl=24 * 3600, show_spinner=False)
def load_regions(country: str) -> list[str]:
    return gateway.fetch_regions(country)


gateway = get_gateway(config.openrouter_api_key, config.model_fast, config.model_pro)
store = get_store(config.database_url)
outscraper = (
    OutscraperService(config.outscraper_api_key) if config.outscraper_api_key else None
)

state = st.session_state
state.setdefault("view", "discovery")
state.setdefault("session", None)
state.setdefault("businesses", [])
state.setdefault("controllers", {})
state.setdefault("active_id", None)
state.setdefault("flash", None)
state.setdefault("sync_status", "")


def _flash(level: str, text: str) -> None:
    state.flash = (level, text)


def _show_flash() -> None:
    if state.flash:
        level, text = state.flash
        getattr(st, level)(text)
        state.flash = None


def _report(report: SaveReport, done: str) -> None:
    if report.discarded or not report.local_ok or report.failed:
        _flash("warning", f"{done} {report.message}")
    else:
        _flash("success", f"{done} {report.message}")


def _run(label: str, action, *args, **kwargs) -> None:
    """Run a controller action with spinner and operator feedback, then rerun."""
    with st.spinner(f"{label}..."):
        try:
            report = action(*args, **kwargs)
        except PreconditionError as e:
            st.warning(str(e))
            return
        except GenerationError as e:
            st.error(f"{e.step} fehlgeschlagen: {e.message}. Bitte erneut versuchen.")
            return
    _report(report, f"{label}: erledigt.")
    st.rerun()


def _replace_business(updated: Business) -> None:
    state.businesses = [updated if b.id == updated.id else b for b in state.businesses]


def _push_to_pipeline(business: Business) -> None:
    """Hand dashboard findings to an already open pipeline for the same business."""
    controller = state.controllers.get(business.id)
    if controller is None:
        return
    report = controller.refresh_business(business)
    if report is not None and report.failed:
        logger.warning(f"'{business.name}': {report.message}")


def _open_pipeline(business: Business) -> None:
    controller = state.controllers.get(business.id)
    if controller is not None:
        _push_to_pipeline(business)
    else:
        controller = PipelineController.open(
            business,
            gateway,
            store,
            scraper=get_scraper(),
            sync_interval=config.sync_interval_seconds,
        )
        state.controllers[business.id] = controller
    state.active_id = business.id
    state.view = "pipeline"


# --- Sidebar: navigation and recent sessions ---
with st.sidebar:
    st.header("Navigation")
    if st.button("Neue Suche", use_container_width=True):
        state.view = "discovery"
        st.rerun()
    if state.businesses and st.button("Dashboard", use_container_width=True):
        state.view = "dashboard"
        st.rerun()

    st.divider()
    st.subheader("Letzte Sessions")
    if not config.remote_enabled:
        st.caption("Keine Remote-Datenbank konfiguriert.")
    else:
        try:
            recent = store.fetch_sessions(limit=20)
        except PersistenceError as e:
            logger.warning(f"Sessions konnten nicht geladen werden: {e}")
            recent = []
            st.caption("Sessions konnten nicht geladen werden.")
        for session in recent:
            label = f"{session.category} · {session.location} ({session.created_at:%d.%m.%Y})"
            if st.button(label, key=f"session_{session.id}", use_container_width=True):
                try:
                    state.businesses = store.fetch_businesses(session.id)
                except PersistenceError as e:
                    st.error(f"Unternehmen konnten nicht geladen werden: {e}")
                else:
                    state.session = session
                    state.controllers = {}
                    state.view = "dashboard"
                    st.rerun()

_show_flash()


# --- Views ---


def render_discovery() -> None:
    st.subheader("Unternehmen finden")

    col1, col2, col3 = st.columns(3)
    with col1:
        continent = st.selectbox("Kontinent", CONTINENTS, index=1)
    with col2:
        country = st.selectbox("Land", countries_for(continent))
    with col3:
        with st.spinner("Lade Regionen..."):
            regions = load_regions(country) if country else []
        region = st.selectbox("Region", regions) if regions else st.text_input("Region")

    suggestion = ""
    if config.google_maps_key:
        query = st.text_input("Oder Ort suchen (Google Maps)", help="z.B. Bozen, München")
        if query:
            client = get_map_provider(config.google_maps_key)
            options = suggest_locations(client, query, cities=True) if client else []
            if options:
                suggestion = st.selectbox("Vorschläge", options)
            elif client is None:
                st.caption("Google Maps ist gerade nicht verfügbar.")

    location = suggestion or full_location(region or "", country or "")

    with st.form("discovery_form"):
        category = st.text_input("Branche", value="Café", help="z.B. Café, Friseur, Zahnarzt")
        col1, col2 = st.columns(2)
        with col1:
            rating_min, rating_max = st.slider("Bewertung", 0.0, 5.0, (4.0, 5.0), step=0.1)
            review_count_min = st.number_input("Mindestanzahl Bewertungen", min_value=0, value=0)
        with col2:
            website_filter = st.selectbox(
                "Website-Filter",
                list(WebsiteFilter),
                format_func=lambda f: FILTER_LABELS[f],
            )
            limit = st.number_input("Anzahl Ergebnisse", min_value=1, max_value=20, value=5)
        include_media = st.checkbox("Medien einbeziehen", value=False)
        submitted = st.form_submit_button("Suche starten", type="primary", use_container_width=True)

    if not submitted:
        return
    if not category.strip() or not location.strip():
        st.warning("Bitte Branche und Ort vollständig angeben.")
        return

    params = SearchParams(
        category=category.strip(),
        location=location,
        rating_min=rating_min,
        rating_max=rating_max,
        website_filter=website_filter,
        review_count_min=int(review_count_min),
        include_media=include_media,
        limit=int(limit),
    )
    with st.spinner(f"Suche {params.category} in {params.location}..."):
        result = start_session(params, gateway, store, outscraper)

    if not result.businesses:
        st.warning("Keine Unternehmen gefunden. Bitte Suchbegriffe oder Filter anpassen.")
        return
    state.session = result.session
    state.businesses = result.businesses
    state.controllers = {}
    state.view = "dashboard"
    _flash("success" if result.synced or not store.enabled else "warning", result.message)
    st.rerun()


def _enrich_all(businesses: list[Business]) -> list[Business]:
    progress = st.progress(0, text="Starte...")
    scrapers = [WebsiteScraper() for _ in range(MAX_WORKERS)]
    enrichers = [BusinessEnricher(gateway, s) for s in scrapers]

    def _enrich_worker(args: tuple[int, Business]) -> tuple[int, Business]:
        idx, biz = args
        try:
            return idx, enrichers[idx % MAX_WORKERS].enrich_business(biz)
        except Exception as e:
            logger.error(f"Enrichment-Fehler für '{biz.name}': {e}")
            return idx, biz

    enriched = list(businesses)
    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as pool:
        futures = [pool.submit(_enrich_worker, (i, biz)) for i, biz in enumerate(businesses)]
        done_count = 0
        for future in as_completed(futures):
            idx, result_biz = future.result()
            enriched[idx] = result_biz
            done_count += 1
            progress.progress(
                done_count / len(businesses),
                text=f"Enrichment: {done_count}/{len(businesses)} fertig",
            )

    for s in scrapers:
        s.close()

    failed = 0
    for biz in enriched:
        _push_to_pipeline(biz)
        try:
            store.update_business(biz)
        except PersistenceError as e:
            logger.warning(f"'{biz.name}': Remote-Update fehlgeschlagen: {e}")
            failed += 1
    if failed:
        _flash("warning", f"Lokal angereichert, {failed} Remote-Updates fehlgeschlagen.")
    return enriched


def render_dashboard() -> None:
    session = state.session
    if session is not None:
        st.subheader(f"{session.category} in {session.location}")
    businesses: list[Business] = state.businesses
    bundles = cache.load_bundles([b.id for b in businesses])

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Alle anreichern", use_container_width=True):
            state.businesses = _enrich_all(businesses)
            if not state.flash:
                _flash("success", "Anreicherung abgeschlossen.")
            st.rerun()
    with col2:
        st.download_button(
            "CSV exportieren",
            data=build_csv(businesses, bundles),
            file_name="prospects.csv",
            mime="text/csv",
            use_container_width=True,
        )

    for biz in businesses:
        bundle = bundles.get(biz.id)
        header = f"{biz.name} · ⭐ {biz.rating:.1f} ({biz.review_count})"
        if bundle is not None:
            header += f" · {STAGE_LABELS[bundle.stage]} · {bundle.completeness_score()}%"
        with st.expander(header):
            st.write(biz.address)
            if biz.description:
                st.caption(biz.description)
            st.write(f"Website: {biz.website or '-'} ({biz.website_status.value})")
            if biz.google_maps_uri:
                st.markdown(f"[Google Maps]({biz.google_maps_uri})")
            if biz.is_enriched:
                data = biz.enriched_data
                st.write(f"Email: {primary_email(biz) or '-'} · Telefon: {primary_phone(biz) or '-'}")
                if data.services:
                    st.write("Leistungen: " + ", ".join(data.services))

            col1, col2 = st.columns(2)
            with col1:
                if st.button("Anreichern", key=f"enrich_{biz.id}", use_container_width=True):
                    with st.spinner("Recherche läuft..."):
                        updated = BusinessEnricher(gateway, get_scraper()).enrich_business(biz)
                    if not updated.is_enriched:
                        st.error("Recherche fehlgeschlagen: keine Daten gefunden.")
                    else:
                        _replace_business(updated)
                        _push_to_pipeline(updated)
                        try:
                            store.update_business(updated)
                            _flash("success", f"'{biz.name}' angereichert.")
                        except PersistenceError as e:
                            logger.warning(f"'{biz.name}': Remote-Update fehlgeschlagen: {e}")
                            _flash("warning", "Lokal angereichert, Remote-Sync fehlgeschlagen.")
                        st.rerun()
            with col2:
                if st.button("Bearbeiten", key=f"process_{biz.id}", type="primary", use_container_width=True):
                    _open_pipeline(biz)
                    st.rerun()


# --- Pipeline stage panels ---


def render_prompt(ctl: PipelineController) -> None:
    bundle = ctl.bundle
    if st.button("Blueprint generieren", type="primary"):
        _run("Blueprint", ctl.draft_blueprint)
    if not bundle.blueprint:
        return
    text = st.text_area("Blueprint", value=bundle.blueprint, height=400)
    col1, col2 = st.columns(2)
    with col1:
        if text != bundle.blueprint and st.button("Änderungen speichern"):
            _run("Blueprint gespeichert", ctl.edit_blueprint, text)
    with col2:
        if st.button("Blueprint freigeben", type="primary"):
            _run("Blueprint freigegeben", ctl.approve_blueprint)
    feedback = st.text_input("Feedback für die KI", key="blueprint_feedback")
    if st.button("Mit KI überarbeiten"):
        _run("Blueprint-Überarbeitung", ctl.revise_blueprint, feedback)


def render_build(ctl: PipelineController) -> None:
    bundle = ctl.bundle
    col1, col2 = st.columns(2)
    with col1:
        design_style = st.selectbox("Design-Stil", DESIGN_STYLES)
    with col2:
        website_type = st.selectbox("Website-Typ", WEBSITE_TYPES)
    if st.button("Website generieren", type="primary"):
        _run(
            "Website",
            ctl.generate_site,
            StyleOptions(design_style=design_style, website_type=website_type),
        )

    if bundle.markup:
        components.html(bundle.markup, height=700, scrolling=True)
        with st.expander("Code"):
            st.code(bundle.markup, language="html")
        instructions = st.text_area("Änderungswünsche", key="site_instructions")
        if st.button("Website überarbeiten"):
            _run("Website-Überarbeitung", ctl.revise_site, instructions)

    st.divider()
    st.markdown("**Bestehende Website prüfen**")
    url = st.text_input("Website-URL", value=bundle.website_url)
    col1, col2 = st.columns(2)
    with col1:
        upload = st.file_uploader("Screenshot hochladen", type=["png", "jpg", "jpeg"])
        if upload is not None and st.button("Screenshot übernehmen"):
            image = base64.b64encode(upload.getvalue()).decode("ascii")
            _run("Screenshot", ctl.attach_screenshot, image, url)
    with col2:
        if st.button("Screenshot automatisch erstellen"):
            _run("Screenshot", ctl.capture_screenshot, url)
        if url != bundle.website_url and st.button("URL speichern"):
            _run("URL gespeichert", ctl.set_website_url, url)
    if bundle.screenshot:
        st.image(base64.b64decode(bundle.screenshot), caption="Screenshot")

    if st.button("Zur Prüfung einreichen", type="primary"):
        _run("Review", ctl.submit_for_review)


def render_review(ctl: PipelineController) -> None:
    review = ctl.bundle.review
    if review is None:
        if st.button("Review starten", type="primary"):
            _run("Review", ctl.rerun_review)
        return

    col1, col2, col3 = st.columns(3)
    col1.metric("Design", f"{review.visual_design_score:.0f}/100")
    col2.metric("Usability", f"{review.usability_score:.0f}/100")
    col3.metric("Conversion", f"{review.conversion_score:.0f}/100")
    if review.is_approved:
        st.success("Die KI hält die Website für präsentationsreif.")
    else:
        st.info("Die KI empfiehlt Verbesserungen vor der Präsentation.")

    if review.strengths:
        st.markdown("**Stärken**\n" + "\n".join(f"- {s}" for s in review.strengths))
    st.markdown("**Kritikpunkte**")
    for point in review.critique:
        st.markdown(f"- {point.point}")
        if point.related_code_snippet:
            st.code(point.related_code_snippet, language="html")
    if review.recommendations:
        st.markdown("**Empfehlungen**\n" + "\n".join(f"- {r}" for r in review.recommendations))

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("Korrekturen automatisch anwenden"):
            _run("Automatische Korrektur", ctl.apply_review_fixes)
    with col2:
        if st.button("Review wiederholen"):
            _run("Review", ctl.rerun_review)
    with col3:
        calendar = st.checkbox("Kalender-Link einfügen", key="review_calendar")
        if st.button("Freigeben & Outreach erstellen", type="primary"):
            _run("Outreach", ctl.approve_review, OutreachOptions(include_calendar=calendar))

    if ctl.bundle.markup:
        with st.expander("Aktuelle Website"):
            components.html(ctl.bundle.markup, height=600, scrolling=True)


def _revision_box(ctl: PipelineController, section: OutreachSection, index: int | None = None) -> None:
    key = f"{section.value}_{index}"
    feedback = st.text_input("Feedback", key=f"feedback_{key}")
    if st.button("Überarbeiten", key=f"revise_{key}"):
        _run("Outreach-Überarbeitung", ctl.revise_outreach, section, feedback, index)


def render_outreach(ctl: PipelineController) -> None:
    outreach = ctl.bundle.outreach
    if outreach is None:
        if st.button("Outreach erstellen", type="primary"):
            _run("Outreach", ctl.regenerate_outreach)
        return

    links = outreach_links(ctl.business, outreach)
    email_tab, whatsapp_tab, script_tab, follow_tab, objection_tab = st.tabs(
        ["Email", "WhatsApp", "Telefon", "Follow-ups", "Einwände"]
    )
    with email_tab:
        st.markdown(f"**Betreff:** {outreach.cold_email.subject}")
        st.text(outreach.cold_email.body)
        st.link_button("Email öffnen", links["email"])
        _revision_box(ctl, OutreachSection.EMAIL)
    with whatsapp_tab:
        st.text(outreach.whatsapp)
        st.link_button("In WhatsApp öffnen", links["whatsapp"])
        _revision_box(ctl, OutreachSection.WHATSAPP)
    with script_tab:
        st.text(outreach.call_script)
        if "call" in links:
            st.link_button("Anrufen", links["call"])
        _revision_box(ctl, OutreachSection.SCRIPT)
    with follow_tab:
        for i, follow_up in enumerate(outreach.follow_ups):
            st.markdown(f"**{i + 1}. {follow_up.subject}** ({follow_up.delay})")
            st.text(follow_up.body)
            _revision_box(ctl, OutreachSection.FOLLOW_UP, i)
    with objection_tab:
        for objection in outreach.objections:
            st.markdown(f"**{objection.objection}**")
            st.write(objection.response)

    col1, col2 = st.columns(2)
    with col1:
        calendar = st.checkbox("Kalender-Link einfügen", key="outreach_calendar")
        if st.button("Neu generieren"):
            _run("Outreach", ctl.regenerate_outreach, OutreachOptions(include_calendar=calendar))
    with col2:
        if st.button("Abschließen", type="primary"):
            _run("Abgeschlossen", ctl.finalize)


def render_summary(ctl: PipelineController) -> None:
    bundle = ctl.bundle
    score = ctl.completeness_score
    st.metric("Vollständigkeit", f"{score}%")
    st.progress(score / 100)
    checks = {
        "Recherche-Daten": bundle.business.is_enriched,
        "Blueprint": bool(bundle.blueprint),
        "Website": bool(bundle.markup or bundle.website_url),
        "Review": bundle.review is not None,
        "Outreach": bundle.outreach is not None,
    }
    for label, done in checks.items():
        st.write(("✅ " if done else "⬜ ") + label)
    if bundle.website_url:
        st.write(f"Preview: {bundle.website_url}")
    if bundle.outreach is not None:
        st.write(f"Email-Betreff: {bundle.outreach.cold_email.subject}")

    if not config.remote_enabled:
        return
    st.markdown("**Remote-Stand**")
    for kind, label in REMOTE_RECORD_LABELS.items():
        try:
            record = store.fetch_record(kind, ctl.business.id)
        except PersistenceError as e:
            logger.warning(f"Remote-Stand ({kind}) nicht lesbar: {e}")
            st.caption("Remote-Datenbank nicht erreichbar.")
            return
        if record is None:
            st.write(f"⬜ {label}: nicht synchronisiert")
        else:
            st.write(f"✅ {label}: {record['updated_at']:%d.%m.%Y %H:%M}")


STAGE_PANELS = {
    Stage.PROMPT: render_prompt,
    Stage.BUILD: render_build,
    Stage.REVIEW: render_review,
    Stage.OUTREACH: render_outreach,
    Stage.SUMMARY: render_summary,
}


@st.fragment(run_every=config.sync_interval_seconds)
def auto_sync(ctl: PipelineController) -> None:
    report = ctl.sync()
    if report is not None:
        state.sync_status = report.message
    if state.sync_status:
        st.caption(f"Auto-Sync: {state.sync_status}")


def render_pipeline() -> None:
    ctl: PipelineController | None = state.controllers.get(state.active_id)
    if ctl is None:
        state.view = "dashboard"
        st.rerun()

    biz = ctl.business
    _replace_business(biz)
    st.subheader(biz.name)
    st.caption(f"{biz.address} · ⭐ {biz.rating:.1f} · Vollständigkeit {ctl.completeness_score}%")

    reachable = STAGE_ORDER[: ctl.bundle.furthest_stage.position + 1]
    cols = st.columns(len(STAGE_ORDER))
    for col, stage in zip(cols, STAGE_ORDER):
        with col:
            active = stage == ctl.stage
            if st.button(
                STAGE_LABELS[stage],
                key=f"nav_{stage.value}",
                type="primary" if active else "secondary",
                disabled=stage not in reachable or active,
                use_container_width=True,
            ):
                _run("Navigation", ctl.navigate_to, stage)

    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        if st.button("Recherche", use_container_width=True):
            _run("Recherche", ctl.enrich)
    with col2:
        if st.button("Speichern", use_container_width=True):
            _run("Gespeichert", ctl.save)
    with col3:
        auto_sync(ctl)

    st.divider()
    STAGE_PANELS[ctl.stage](ctl)


VIEWS = {
    "discovery": render_discovery,
    "dashboard": render_dashboard,
    "pipeline": render_pipeline,
}

VIEWS[state.view]()

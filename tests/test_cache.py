import cache
from conftest import make_business, make_review

from models import PipelineBundle, Stage, WebsiteFilter


def test_bundle_roundtrip():
    bundle = PipelineBundle(
        business=make_business(), stage=Stage.REVIEW, blueprint="# Plan", review=make_review()
    )
    assert cache.save_bundle(bundle) is True
    assert cache.load_bundle(bundle.business.id) == bundle


def test_bundle_is_replaced_not_duplicated():
    bundle = PipelineBundle(business=make_business(), blueprint="v1")
    cache.save_bundle(bundle)
    bundle.blueprint = "v2"
    cache.save_bundle(bundle)

    conn = cache._get_conn()
    count = conn.execute("SELECT COUNT(*) FROM bundles").fetchone()[0]
    conn.close()
    assert count == 1
    assert cache.load_bundle(bundle.business.id).blueprint == "v2"


def test_missing_bundle():
    assert cache.load_bundle("does-not-exist") is None


def test_load_bundles_skips_unknown_ids():
    first = PipelineBundle(business=make_business(name="A"))
    second = PipelineBundle(business=make_business(name="B"))
    cache.save_bundle(first)
    cache.save_bundle(second)

    bundles = cache.load_bundles([first.business.id, "unknown", second.business.id])
    assert set(bundles) == {first.business.id, second.business.id}


def test_save_bundle_reports_failure(tmp_path, monkeypatch):
    # a directory cannot be opened as a database file
    monkeypatch.setattr(cache, "_DB_PATH", tmp_path)
    assert cache.save_bundle(PipelineBundle(business=make_business())) is False
    assert cache.load_bundle("anything") is None


def test_discovery_cache_key_is_normalized():
    businesses = [make_business(), make_business(name="Bean There")]
    cache.set_cached_businesses(
        "Cafe ", "Springfield", 4, WebsiteFilter.NO_WEBSITE, 5, businesses
    )

    cached = cache.get_cached_businesses(
        "cafe", " springfield", 4.0, WebsiteFilter.NO_WEBSITE, 5
    )
    assert [b.name for b in cached] == ["Joe's Cafe", "Bean There"]
    assert cache.get_cached_businesses("cafe", "springfield", 4.0, WebsiteFilter.ANY, 5) is None


def test_discovery_cache_key_includes_limit():
    cache.set_cached_businesses("Cafe", "Springfield", 4.0, WebsiteFilter.ANY, 1, [make_business()])
    assert cache.get_cached_businesses("Cafe", "Springfield", 4.0, WebsiteFilter.ANY, 5) is None
    assert len(cache.get_cached_businesses("Cafe", "Springfield", 4.0, WebsiteFilter.ANY, 1)) == 1


def test_discovery_cache_expires(monkeypatch):
    cache.set_cached_businesses("Cafe", "Springfield", 4.0, WebsiteFilter.ANY, 5, [make_business()])
    monkeypatch.setattr(cache, "_TTL_SECONDS", -1)
    assert cache.get_cached_businesses("Cafe", "Springfield", 4.0, WebsiteFilter.ANY, 5) is None

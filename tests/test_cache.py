"""Tests for the FIFO embedding cache."""

from __future__ import annotations

import threading

import pytest

from orchestrator.services.cache import EmbeddingCache, normalize_text

# ── Normalization ────────────────────────────────────────────────────


class TestNormalizeText:
    def test_collapses_whitespace_and_case_folds(self):
        assert normalize_text("  Hello \n  World\t") == "hello world"

    def test_truncates_to_max_chars(self):
        assert normalize_text("abcdef", max_chars=3) == "abc"

    def test_truncation_happens_before_case_fold(self):
        assert normalize_text("ABCDEF   GH", max_chars=7) == "abcdef "


# ── Core operations ──────────────────────────────────────────────────


class TestEmbeddingCacheBasics:
    def test_put_and_get(self):
        cache = EmbeddingCache()
        cache.put("teeth whitening", [0.1, 0.2])
        assert cache.get("teeth whitening") == [0.1, 0.2]

    def test_get_returns_none_for_missing_key(self):
        cache = EmbeddingCache()
        assert cache.get("nothing here") is None

    def test_equivalent_texts_share_an_entry(self):
        cache = EmbeddingCache()
        cache.put("Teeth   Whitening", [1.0])
        assert cache.get("teeth whitening") == [1.0]
        assert "TEETH WHITENING" in cache
        assert cache.entry_count == 1

    def test_put_overwrites_existing_key(self):
        cache = EmbeddingCache()
        cache.put("key", [1.0])
        cache.put("KEY", [2.0])
        assert cache.get("key") == [2.0]
        assert cache.entry_count == 1

    def test_clear_removes_entries_and_counters(self):
        cache = EmbeddingCache()
        cache.put("a", [1.0])
        cache.get("a")
        cache.clear()
        assert cache.entry_count == 0
        assert cache.stats()["hits"] == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            EmbeddingCache(max_entries=0)


# ── FIFO eviction ────────────────────────────────────────────────────


class TestFIFOEviction:
    def test_evicts_oldest_inserted_at_capacity(self):
        cache = EmbeddingCache(max_entries=2)
        cache.put("first", [1.0])
        cache.put("second", [2.0])
        cache.put("third", [3.0])

        assert cache.get("first") is None
        assert cache.get("second") == [2.0]
        assert cache.get("third") == [3.0]

    def test_reads_do_not_protect_from_eviction(self):
        cache = EmbeddingCache(max_entries=2)
        cache.put("first", [1.0])
        cache.put("second", [2.0])
        cache.get("first")
        cache.put("third", [3.0])

        assert "first" not in cache
        assert "second" in cache

    def test_size_never_exceeds_capacity(self):
        cache = EmbeddingCache(max_entries=5)
        for i in range(50):
            cache.put(f"text {i}", [float(i)])
        assert cache.entry_count == 5


# ── Stats and concurrency ────────────────────────────────────────────


class TestStats:
    def test_hit_rate(self):
        cache = EmbeddingCache()
        cache.put("a", [1.0])
        cache.get("a")
        cache.get("a")
        cache.get("b")
        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(0.667)

    def test_empty_cache_hit_rate_is_zero(self):
        assert EmbeddingCache().stats()["hit_rate"] == 0.0


class TestThreadSafety:
    def test_concurrent_puts_respect_capacity(self):
        cache = EmbeddingCache(max_entries=10)

        def _writer(offset: int) -> None:
            for i in range(200):
                cache.put(f"w{offset}-{i}", [float(i)])

        threads = [threading.Thread(target=_writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.entry_count == 10

"""Tests for the cached embedding service."""

from __future__ import annotations

import pytest

from orchestrator.services.cache import EmbeddingCache
from orchestrator.services.embeddings import EmbeddingService


class TestEmbedQuery:
    def test_same_text_is_embedded_upstream_once(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings)

        first = service.embed_query("Do you accept insurance?")
        second = service.embed_query("  do you ACCEPT insurance? ")

        assert first == second
        assert fake_embeddings.embed_query.call_count == 1

    def test_upstream_receives_normalized_text(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings)
        service.embed_query("Hello   World")
        fake_embeddings.embed_query.assert_called_once_with("hello world")

    def test_provider_failure_propagates_and_caches_nothing(self, fake_embeddings):
        fake_embeddings.embed_query.side_effect = RuntimeError("rate limited")
        service = EmbeddingService(fake_embeddings)

        with pytest.raises(RuntimeError):
            service.embed_query("hours")
        assert service.cache.entry_count == 0

    def test_patient_name_uses_prefixed_key(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings)
        service.embed_patient_name("  Maria Silva ")
        fake_embeddings.embed_query.assert_called_once_with("name: maria silva")


class TestEmbedDocuments:
    def test_only_misses_go_upstream_in_order(self, fake_embeddings):
        cache = EmbeddingCache()
        cache.put("b", [9.0])
        service = EmbeddingService(fake_embeddings, cache=cache)

        vectors = service.embed_documents(["a", "b", "ccc"])

        assert vectors == [[1.0, 0.0, 1.0], [9.0], [3.0, 0.0, 1.0]]
        fake_embeddings.embed_documents.assert_called_once_with(["a", "ccc"])

    def test_texts_sharing_a_key_are_sent_once(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings)

        vectors = service.embed_documents(["Same text", "same  text", "other"])

        fake_embeddings.embed_documents.assert_called_once_with(["same text", "other"])
        assert vectors[0] == vectors[1] == [9.0, 0.0, 1.0]
        assert len(vectors) == 3
        assert service.cache.entry_count == 2

    def test_misses_are_batched(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings, batch_size=2)
        service.embed_documents(["one", "two", "three", "four", "five"])
        assert fake_embeddings.embed_documents.call_count == 3

    def test_stats_reflect_cache(self, fake_embeddings):
        service = EmbeddingService(fake_embeddings)
        service.embed_query("x")
        service.embed_query("x")
        assert service.stats()["hits"] == 1

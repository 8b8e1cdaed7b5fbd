"""Tests for the per-user classification cache."""

from hypothesis import given
from hypothesis import strategies as st

from topicspaces.classification_cache import CacheEntry, ClassificationCache
from topicspaces.hashing import hash_text


class TestGetSet:
    def test_miss_on_empty_cache(self, cache):
        assert cache.get("u1", "p1", "text") is None

    def test_hit_with_same_text(self, cache):
        cache.set("u1", "p1", "GPU kernels", "CUDA", "About CUDA")

        cached = cache.get("u1", "p1", "GPU kernels")

        assert cached is not None
        assert cached.topic_label == "CUDA"
        assert cached.summary == "About CUDA"
        assert cached.text_hash == hash_text("GPU kernels")
        assert cached.raw_label is None

    def test_changed_text_evicts_entry(self, cache):
        cache.set("u1", "p1", "A", "Label A", "summary")

        assert cache.get("u1", "p1", "B") is None
        assert cache.get_all("u1") == []

    def test_set_after_invalidation_returns_new_value(self, cache):
        cache.set("u1", "p1", "A", "Label A", "old")
        assert cache.get("u1", "p1", "B") is None

        cache.set("u1", "p1", "B", "Label B", "new")
        cached = cache.get("u1", "p1", "B")

        assert cached.topic_label == "Label B"
        assert cached.summary == "new"

    def test_set_overwrites(self, cache):
        cache.set("u1", "p1", "A", "First", "s1")
        cache.set("u1", "p1", "A", "Second", "s2")

        assert cache.get("u1", "p1", "A").topic_label == "Second"
        assert len(cache.get_all("u1")) == 1

    def test_users_are_isolated(self, cache):
        cache.set("alice", "p1", "same text", "Alice Label", "a")

        assert cache.get("bob", "p1", "same text") is None
        assert cache.get_all("bob") == []
        assert cache.get("alice", "p1", "same text").topic_label == "Alice Label"


class TestSetMany:
    def test_single_timestamp_for_batch(self, cache, clock):
        cache.set_many(
            "u1",
            [
                CacheEntry("p1", "t1", "L1", "s1"),
                CacheEntry("p2", "t2", "L2", "s2"),
            ],
        )

        stamps = {c.cached_at for c in cache.get_all("u1")}
        assert stamps == {clock.now}

    def test_entries_are_retrievable(self, cache):
        cache.set_many("u1", [CacheEntry("p1", "t1", "L1", "s1")])

        assert cache.get("u1", "p1", "t1").topic_label == "L1"


class TestDisabled:
    def test_get_never_hits(self):
        cache = ClassificationCache(enabled=False)
        cache.set("u1", "p1", "text", "Label", "summary")

        assert cache.get("u1", "p1", "text") is None

    def test_set_many_is_noop(self):
        cache = ClassificationCache(enabled=False)
        cache.set_many("u1", [CacheEntry("p1", "t", "L", "s")])

        assert cache.get_all("u1") == []
        assert cache.get_stats("u1")["total"] == 0

    @given(
        st.lists(
            st.tuples(
                st.sampled_from(["set", "get"]),
                st.sampled_from(["u1", "u2"]),
                st.sampled_from(["p1", "p2", "p3"]),
                st.text(max_size=20),
            ),
            max_size=30,
        )
    )
    def test_behaves_as_always_empty(self, operations):
        cache = ClassificationCache(enabled=False)
        for op, user_id, post_id, text in operations:
            if op == "set":
                cache.set(user_id, post_id, text, "Label", "summary")
            else:
                assert cache.get(user_id, post_id, text) is None
        assert cache.get_all("u1") == []
        assert cache.get_all("u2") == []


class TestApplyNormalization:
    def test_rewrites_mapped_labels(self, cache):
        cache.set("u1", "p1", "t1", "ML", "s")
        cache.set("u1", "p2", "t2", "Cooking", "s")

        rewritten = cache.apply_normalization("u1", {"ML": "AI & Machine Learning"})

        assert rewritten == 1
        entry = cache.get("u1", "p1", "t1")
        assert entry.topic_label == "AI & Machine Learning"
        assert entry.raw_label == "ML"
        assert cache.get("u1", "p2", "t2").raw_label is None

    def test_identity_mapping_changes_nothing(self, cache):
        cache.set("u1", "p1", "t1", "ML", "s")

        assert cache.apply_normalization("u1", {"ML": "ML"}) == 0
        assert cache.get("u1", "p1", "t1").raw_label is None

    def test_first_normalization_keeps_provenance(self, cache):
        cache.set("u1", "p1", "t1", "ml stuff", "s")

        cache.apply_normalization("u1", {"ml stuff": "Machine Learning"})
        cache.apply_normalization("u1", {"Machine Learning": "AI & ML"})

        entry = cache.get("u1", "p1", "t1")
        assert entry.topic_label == "AI & ML"
        assert entry.raw_label == "ml stuff"

    def test_unknown_user(self, cache):
        assert cache.apply_normalization("nobody", {"a": "b"}) == 0


class TestStatsAndClearing:
    def test_stats_empty(self, cache):
        assert cache.get_stats("u1") == {"total": 0, "oldest_age": 0, "newest_age": 0}

    def test_stats_ages_in_minutes(self, cache, clock):
        cache.set("u1", "p1", "t1", "L", "s")
        clock.advance(30)
        cache.set("u1", "p2", "t2", "L", "s")
        clock.advance(10)

        stats = cache.get_stats("u1")

        assert stats == {"total": 2, "oldest_age": 40, "newest_age": 10}

    def test_clear_user(self, cache):
        cache.set("u1", "p1", "t", "L", "s")
        cache.set("u2", "p1", "t", "L", "s")

        cache.clear("u1")

        assert cache.get_all("u1") == []
        assert len(cache.get_all("u2")) == 1

    def test_clear_all(self, cache):
        cache.set("u1", "p1", "t", "L", "s")
        cache.set("u2", "p1", "t", "L", "s")

        cache.clear_all()

        assert cache.get_all("u1") == []
        assert cache.get_all("u2") == []

    def test_context_manager_closes(self, clock):
        with ClassificationCache(clock=clock) as cache:
            cache.set("u1", "p1", "t", "L", "s")
            assert len(cache.get_all("u1")) == 1

        assert cache.get_all("u1") == []

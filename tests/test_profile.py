import math
from datetime import datetime, timedelta, timezone

import pytest

from app.config import INTERACTION_WEIGHTS, Settings
from app.profile import ProfileAggregator, article_vector, extract_keywords, normalize
from app.models import Article
from app.stores import ArticleStore, InteractionStore

NOW = datetime.now(timezone.utc)


def make_aggregator(db, **overrides) -> ProfileAggregator:
    return ProfileAggregator(InteractionStore(db), ArticleStore(db), Settings(**overrides))


# ---------------------------------------------------------------------------
# Keyword helpers
# ---------------------------------------------------------------------------

class TestExtractKeywords:
    def test_lowercases_and_drops_short_tokens(self):
        assert extract_keywords("AI Chips Go Big") == ["chips", "big"]

    def test_removes_stop_words(self):
        assert extract_keywords("The market and the economy") == ["market", "economy"]

    def test_handles_none(self):
        assert extract_keywords(None) == []

    def test_ignores_digits_and_punctuation(self):
        assert extract_keywords("Q3 earnings: 2025, up!") == ["earnings"]


class TestArticleVector:
    def test_title_tokens_count_double(self):
        article = Article(id="a", title="Processors", content="processors", category="technology")
        vector = article_vector(article)
        assert vector["processors"] == 3.0

    def test_includes_category_feature(self):
        article = Article(id="a", title="Final", content=None, category="Sports")
        assert article_vector(article)["category:sports"] == 1.0


class TestNormalize:
    def test_sums_to_one(self):
        result = normalize({"a": 2.0, "b": 6.0})
        assert result == {"a": 0.25, "b": 0.75}

    def test_empty_stays_empty(self):
        assert normalize({}) == {}


# ---------------------------------------------------------------------------
# build_profile
# ---------------------------------------------------------------------------

class TestBuildProfile:
    def test_empty_history_gives_empty_profile(self, db):
        profile = make_aggregator(db).build_profile("nobody", now=NOW)

        assert profile.total_interactions == 0
        assert profile.category_weights == {}
        assert profile.keyword_weights == {}
        assert profile.recency_decayed_engagement == 0.0

    def test_single_interaction_owns_its_category(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology", title="Quantum processors")
        add_interaction(article_id="t1", action="save", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.total_interactions == 1
        assert profile.category_weights == {"technology": pytest.approx(1.0)}
        assert profile.recency_decayed_engagement == pytest.approx(INTERACTION_WEIGHTS["save"])

    def test_weights_normalized_per_dimension(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology", title="Quantum processors")
        add_article(id="s1", category="sports", title="Football final")
        add_interaction(article_id="t1", action="view", timestamp=NOW)
        add_interaction(article_id="s1", action="share", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert sum(profile.category_weights.values()) == pytest.approx(1.0)
        assert sum(profile.keyword_weights.values()) == pytest.approx(1.0)

    def test_action_weights_applied(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_article(id="s1", category="sports")
        add_interaction(article_id="t1", action="save", timestamp=NOW)   # 3.0
        add_interaction(article_id="s1", action="view", timestamp=NOW)   # 1.0

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.category_weights["technology"] == pytest.approx(0.75)
        assert profile.category_weights["sports"] == pytest.approx(0.25)

    def test_older_interactions_decay(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_article(id="s1", category="sports")
        add_interaction(article_id="t1", action="view", timestamp=NOW)
        add_interaction(article_id="s1", action="view", timestamp=NOW - timedelta(days=10))

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        old = math.exp(-0.1 * 10)
        assert profile.category_weights["technology"] == pytest.approx(1 / (1 + old), rel=1e-4)
        assert profile.category_weights["sports"] == pytest.approx(old / (1 + old), rel=1e-4)

    def test_decay_lambda_is_configurable(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_interaction(article_id="t1", action="view", timestamp=NOW - timedelta(days=5))

        profile = make_aggregator(db, decay_lambda=0.0).build_profile("user-1", now=NOW)

        assert profile.recency_decayed_engagement == pytest.approx(1.0)

    def test_interactions_outside_lookback_are_ignored(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_interaction(article_id="t1", action="save", timestamp=NOW - timedelta(days=100))

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.total_interactions == 0

    def test_other_users_are_not_included(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_interaction(user_id="someone-else", article_id="t1", action="save", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.total_interactions == 0

    def test_positive_vector_only_from_positive_actions(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology", title="Quantum processors")
        add_interaction(article_id="t1", action="view", timestamp=NOW)
        add_interaction(article_id="t1", action="summarize", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.positive_vector == {}

    def test_positive_vector_from_saved_article(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology", title="Quantum processors", content=None)
        add_interaction(article_id="t1", action="save", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert set(profile.positive_vector) == {"quantum", "processors", "category:technology"}

    def test_recent_engagement_limited_to_half_life_window(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_article(id="s1", category="sports")
        add_interaction(article_id="t1", action="read_complete", timestamp=NOW - timedelta(days=1))
        add_interaction(article_id="s1", action="read_complete", timestamp=NOW - timedelta(days=10))

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert "sports" not in profile.recent_category_engagement
        expected = INTERACTION_WEIGHTS["read_complete"] * 0.5 ** (1 / 7)
        assert profile.recent_category_engagement["technology"] == pytest.approx(expected, rel=1e-4)

    def test_unknown_action_counted_but_not_weighted(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_interaction(article_id="t1", action="bookmark", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.total_interactions == 1
        assert profile.category_weights == {}

    def test_missing_article_still_counts_as_seen(self, db, add_interaction):
        add_interaction(article_id="deleted-article", action="view", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.total_interactions == 1
        assert profile.seen_article_ids == {"deleted-article"}
        assert profile.category_weights == {}
        assert profile.recency_decayed_engagement == pytest.approx(1.0)

    def test_top_categories_sorted_by_weight(self, db, add_article, add_interaction):
        add_article(id="t1", category="technology")
        add_article(id="s1", category="sports")
        add_interaction(article_id="t1", action="view", timestamp=NOW)
        add_interaction(article_id="s1", action="save", timestamp=NOW)

        profile = make_aggregator(db).build_profile("user-1", now=NOW)

        assert profile.top_categories() == ["sports", "technology"]

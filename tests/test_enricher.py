"""Tests for mention filtering, context building and enrichment."""

import json

import pytest

from conftest import FakeLLM, make_mention
from signalbot.enricher import SignalEnricher, best_engagement, build_context
from signalbot.models import ConversationMessage, Engagement
from signalbot.weighting import engagement_weight

VALID_CLASSIFICATION = json.dumps({
    "signal_type": "news",
    "core_claim": "The Fed will pause in March",
    "urgency": "breaking",
    "topics": ["Fed policy", "rates"],
    "is_noise": False,
})


def _message(message_id, likes=0, reshares=0, quote_shares=0, text="parent claim"):
    return ConversationMessage(
        message_id=message_id,
        text=text,
        author_handle=f"author{message_id}",
        author_followers=5000,
        engagement=Engagement(likes=likes, reshares=reshares, quote_shares=quote_shares),
    )


class TestFilterMentions:
    def test_drops_new_and_small_accounts(self, config):
        enricher = SignalEnricher(FakeLLM(), config)
        mentions = [
            make_mention("1", handle="ok"),
            make_mention("2", handle="new", account_age_days=3),
            make_mention("3", handle="small", followers=10),
        ]

        kept = enricher.filter_mentions(mentions)

        assert [m.author.handle for m in kept] == ["ok"]

    def test_thresholds_are_inclusive(self, config):
        enricher = SignalEnricher(FakeLLM(), config)
        mention = make_mention(account_age_days=config.min_account_age_days, followers=config.min_followers)
        assert enricher.filter_mentions([mention]) == [mention]


class TestBuildContext:
    def test_reply_context_is_root_first(self):
        mention = make_mention(conversation_context=[_message("1", text="root"), _message("2", text="parent")])

        context = build_context(mention)

        assert context.index("[Ancestor 1]") < context.index("[Parent]") < context.index("TAGGING TWEET")
        assert "This tweet is a reply" in context

    def test_quote_and_reply_note(self):
        mention = make_mention(conversation_context=[_message("1")], quoted_message=_message("9"))
        context = build_context(mention)
        assert "QUOTED TWEET" in context
        assert "both a reply and a quote" in context

    def test_plain_mention_has_no_note(self):
        context = build_context(make_mention())
        assert "NOTE" not in context
        assert "URLs in tweet: none" in context


class TestBestEngagement:
    def test_picks_highest_scoring_candidate(self):
        mention = make_mention(
            likes=5,
            conversation_context=[_message("1", likes=1000), _message("2", likes=10)],
            quoted_message=_message("3", reshares=20),
        )
        # Nearest parent scores 10, quoted scores 40, own scores 5
        assert best_engagement(mention).reshares == 20

    def test_tie_keeps_mention_own_engagement(self):
        mention = make_mention(likes=3, quoted_message=_message("3", likes=3))
        assert best_engagement(mention) is mention.engagement


class TestEnrichMention:
    def test_valid_classification(self, config):
        mention = make_mention(likes=2, quoted_message=_message("3", quote_shares=10))
        enricher = SignalEnricher(FakeLLM([VALID_CLASSIFICATION]), config)

        signal = enricher.enrich_mention(mention)

        assert signal is not None
        assert signal.id.startswith("sig_")
        assert signal.signal_type == "news"
        assert signal.urgency == "breaking"
        assert signal.topics == ["Fed policy", "rates"]
        assert signal.raw is mention
        assert signal.weight == pytest.approx(engagement_weight(0, 0, 10))

    @pytest.mark.parametrize("response", [
        json.dumps({"is_noise": True}),
        json.dumps({"signal_type": "noise", "core_claim": "gm", "urgency": "slow", "topics": []}),
        "definitely not json",
        json.dumps({"signal_type": "news", "core_claim": "  ", "urgency": "slow"}),
    ])
    def test_noise_or_unusable_output_returns_none(self, config, response):
        enricher = SignalEnricher(FakeLLM([response]), config)
        assert enricher.enrich_mention(make_mention()) is None

    def test_transport_error_returns_none(self, config):
        enricher = SignalEnricher(FakeLLM([RuntimeError("boom")]), config)
        assert enricher.enrich_mention(make_mention()) is None

    def test_unknown_labels_are_normalised(self, config):
        response = json.dumps({"signal_type": "gossip", "core_claim": "x happened", "urgency": "asap", "topics": "x"})
        enricher = SignalEnricher(FakeLLM([response]), config)

        signal = enricher.enrich_mention(make_mention())

        assert signal.signal_type == "rumor"
        assert signal.urgency == "slow"
        assert signal.topics == []


class TestEnrichBatch:
    def test_preserves_order_and_skips_failures(self, config):
        def responder(system, prompt):
            if "skip me" in prompt:
                raise RuntimeError("classification down")
            if "gm" in prompt:
                return json.dumps({"is_noise": True})
            return VALID_CLASSIFICATION

        mentions = [
            make_mention(str(i), handle=f"user{i}", text=text)
            for i, text in enumerate(["first", "gm", "skip me", "fourth", "fifth", "sixth", "seventh"])
        ]
        mentions.append(make_mention("99", handle="tiny", followers=1))
        llm = FakeLLM(responder=responder)
        enricher = SignalEnricher(llm, config)

        signals = enricher.enrich_batch(mentions)

        assert [s.raw.mention_id for s in signals] == ["0", "3", "4", "5", "6"]
        # The low-follower account is filtered before any classification call
        assert len(llm.calls) == 7

    def test_empty_input(self, config):
        assert SignalEnricher(FakeLLM(), config).enrich_batch([]) == []

"""Unit tests for the LLM transaction scorer."""

import json
from unittest.mock import AsyncMock

import pytest

from sentinel.errors import ParseError
from sentinel.models import RuleHit, SentinelState
from sentinel.scorer import (
    RULE_CATALOG,
    TransactionScorer,
    build_transaction_context,
    build_user_prompt,
    clamp_score,
    parse_model_output,
    sanitize_rule_hits,
    to_number,
)


class TestNumberCoercion:
    """Test score clamping and weight coercion."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(-1, 0.0), (2, 1.0), ("abc", 0.0), ("0.5", 0.5), (None, 0.0), (True, 0.0)],
    )
    def test_clamp_score(self, raw, expected):
        """Test that any score input ends up in [0, 1]."""
        assert clamp_score(raw) == expected

    def test_to_number_rejects_non_finite(self):
        """Test infinities and NaN are not numbers."""
        assert to_number(float("inf")) is None
        assert to_number("nan") is None

    def test_to_number_rejects_bools(self):
        """Test booleans are not treated as numeric."""
        assert to_number(False) is None


class TestParsing:
    """Test parsing of model output."""

    def test_parses_plain_json(self):
        """Test a bare JSON answer parses."""
        assert parse_model_output('{"rule_hits": [], "score": 0.1}') == {"rule_hits": [], "score": 0.1}

    def test_recovers_json_from_prose(self):
        """Test the first-brace to last-brace span is used when prose surrounds the JSON."""
        text = 'Here is the analysis:\n{"rule_hits": [], "score": 0.3}\nLet me know.'
        assert parse_model_output(text)["score"] == 0.3

    def test_invalid_json_raises(self):
        """Test unparseable output raises ParseError."""
        with pytest.raises(ParseError):
            parse_model_output("no json here")

    def test_missing_rule_hits_raises(self):
        """Test a JSON object without a rule_hits list raises ParseError."""
        with pytest.raises(ParseError):
            parse_model_output('{"score": 0.9}')


class TestSanitizing:
    """Test rule hit sanitization."""

    def test_only_catalog_rules_survive(self):
        """Test hits outside the catalog or with bad fields are dropped."""
        hits = sanitize_rule_hits(
            [
                {"rule_id": "kyc:pep", "rationale": "Customer is a PEP", "weight": 0.3},
                {"rule_id": "made:up", "rationale": "x", "weight": 0.2},
                {"rule_id": "txn:large_amount", "rationale": "big", "weight": "abc"},
                {"rule_id": "txn:odd_tail", "rationale": 5, "weight": 0.1},
                {"rule_id": "fx:unusual_spread", "rationale": "spread", "weight": "0.15"},
                "not a dict",
            ]
        )

        assert [hit.rule_id for hit in hits] == ["kyc:pep", "fx:unusual_spread"]
        assert hits[1].weight == 0.15

    def test_rationale_is_truncated(self):
        """Test long rationales are cut to 220 characters."""
        hits = sanitize_rule_hits([{"rule_id": "kyc:pep", "rationale": "r" * 500, "weight": 0.2}])
        assert len(hits[0].rationale) == 220

    def test_non_list_yields_nothing(self):
        """Test non-list input produces no hits."""
        assert sanitize_rule_hits({"rule_id": "kyc:pep"}) == []


class TestPrompt:
    """Test the context handed to the model."""

    def test_context_flattens_meta(self, sample_transaction):
        """Test transaction fields and selected meta keys reach the context."""
        context = build_transaction_context(sample_transaction, None)

        assert context["transaction_id"] == "txn_001"
        assert context["amount"] == 250000
        assert context["customer_is_pep"] is True
        assert context["beneficiary_country"] == "RU"
        assert context["narrative"] is None

    def test_context_without_transaction(self):
        """Test a missing transaction still yields an id-only context."""
        context = build_transaction_context(None, "txn_missing")
        assert context["transaction_id"] == "txn_missing"
        assert context["amount"] == 0

    def test_user_prompt_sections(self, sample_transaction):
        """Test the prompt carries catalog, schema, guidance, mappings and context."""
        prompt = json.loads(build_user_prompt(build_transaction_context(sample_transaction, None)))

        assert set(prompt) == {"RULE_CATALOG", "SCHEMA", "GUIDANCE", "RULE_MAPPINGS", "CONTEXT"}
        assert prompt["RULE_CATALOG"] == RULE_CATALOG
        assert len(RULE_CATALOG) == 16


class TestTransactionScorer:
    """Test end-to-end scoring through a fake LLM."""

    @pytest.mark.asyncio
    async def test_score_loads_transaction_from_store(self, llm, store):
        """Test the transaction is fetched when the state only carries an id."""
        llm.response = json.dumps(
            {"rule_hits": [{"rule_id": "kyc:pep", "rationale": "PEP", "weight": 0.3}], "score": 0.45}
        )
        scorer = TransactionScorer(llm, store)

        update = await scorer.score(SentinelState(transaction_id="txn_001"))

        assert update.transaction.id == "txn_001"
        assert update.score == 0.45
        assert [hit.rule_id for hit in update.rule_hits] == ["kyc:pep"]
        context = json.loads(llm.calls[0]["user"])["CONTEXT"]
        assert context["currency"] == "SGD"

    @pytest.mark.asyncio
    async def test_score_keeps_existing_hits(self, llm, sample_transaction):
        """Test new hits are appended to the state's hits."""
        llm.response = json.dumps(
            {"rule_hits": [{"rule_id": "txn:large_amount", "rationale": "Large", "weight": 0.2}], "score": 0.3}
        )
        existing = RuleHit(rule_id="kyc:pep", rationale="PEP", weight=0.3)
        state = SentinelState(transaction_id="txn_001", transaction=sample_transaction, rule_hits=[existing])

        update = await TransactionScorer(llm).score(state)

        assert [hit.rule_id for hit in update.rule_hits] == ["kyc:pep", "txn:large_amount"]

    @pytest.mark.asyncio
    async def test_score_clamps_out_of_range(self, llm, sample_transaction):
        """Test model scores outside [0, 1] are clamped."""
        llm.response = '{"rule_hits": [], "score": 7}'
        update = await TransactionScorer(llm).score(SentinelState(transaction=sample_transaction))
        assert update.score == 1.0

    @pytest.mark.asyncio
    async def test_store_lookup_failure_is_ignored(self, llm):
        """Test a failing transaction lookup still scores the id-only context."""
        store = AsyncMock()
        store.get_transaction.side_effect = RuntimeError("db down")

        update = await TransactionScorer(llm, store).score(SentinelState(transaction_id="txn_404"))

        assert update.transaction is None
        assert json.loads(llm.calls[0]["user"])["CONTEXT"]["transaction_id"] == "txn_404"

    @pytest.mark.asyncio
    async def test_invalid_output_raises(self, llm, sample_transaction):
        """Test unparseable model output propagates as ParseError."""
        llm.response = "I cannot help with that."
        with pytest.raises(ParseError):
            await TransactionScorer(llm).score(SentinelState(transaction=sample_transaction))

    def test_scorer_reports_origin_and_model(self, llm):
        """Test origin and model metadata."""
        scorer = TransactionScorer(llm)
        assert scorer.origin == "llm"
        assert scorer.model == "fake-model"

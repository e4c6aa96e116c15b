"""Tests for score processors."""

import math

import pytest
import torch

from decodekit.generation import GenerationConfig, InvalidConfig
from decodekit.generation.processors import (
    apply_repetition_penalty,
    get_banned_ngram_tokens,
    apply_no_repeat_ngram,
    apply_min_length,
    apply_temperature,
    top_k_filtering,
    top_p_filtering,
    process_scores,
)


class TestRepetitionPenalty:
    """Tests for repetition penalty."""

    def test_positive_scores_divided(self):
        """Positive scores of seen tokens should be divided by the penalty."""
        scores = torch.tensor([[2.0, 4.0, 6.0]])
        out = apply_repetition_penalty(scores, [[1]], penalty=2.0)
        assert torch.allclose(out, torch.tensor([[2.0, 2.0, 6.0]]))

    def test_negative_scores_multiplied(self):
        """Negative scores of seen tokens should be multiplied by the penalty."""
        scores = torch.tensor([[-1.0, -2.0, 3.0]])
        out = apply_repetition_penalty(scores, [[0, 1]], penalty=2.0)
        assert torch.allclose(out, torch.tensor([[-2.0, -4.0, 3.0]]))

    def test_penalty_always_reduces(self):
        """A penalized token should never become more likely."""
        scores = torch.randn(4, 20)
        histories = [[0, 3, 5], [1], [], [19, 19, 2]]
        out = apply_repetition_penalty(scores, histories, penalty=1.5)
        for row, history in enumerate(histories):
            for token in history:
                assert out[row, token] <= scores[row, token]

    def test_penalty_one_is_noop(self):
        """Penalty 1.0 should leave scores untouched."""
        scores = torch.randn(2, 5)
        out = apply_repetition_penalty(scores, [[0], [1]], penalty=1.0)
        assert torch.equal(out, scores)

    def test_input_not_modified(self):
        """The caller's tensor should not be changed in place."""
        scores = torch.tensor([[2.0, 4.0]])
        apply_repetition_penalty(scores, [[0]], penalty=2.0)
        assert torch.equal(scores, torch.tensor([[2.0, 4.0]]))


class TestNoRepeatNgram:
    """Tests for n-gram blocking."""

    def test_bigram_banned(self):
        """The token completing a seen bigram should be banned."""
        assert get_banned_ngram_tokens([1, 2, 3, 1], ngram_size=2) == [2]

    def test_trigram_banned(self):
        """The token completing a seen trigram should be banned."""
        assert get_banned_ngram_tokens([4, 5, 6, 4, 5], ngram_size=3) == [6]

    def test_multiple_continuations(self):
        """Every seen continuation of the prefix should be banned."""
        assert get_banned_ngram_tokens([1, 2, 1, 3, 1], ngram_size=2) == [2, 3]

    def test_unigram_bans_history(self):
        """n=1 should ban every token already present."""
        assert get_banned_ngram_tokens([3, 1, 3], ngram_size=1) == [1, 3]

    def test_disabled(self):
        """n=0 should ban nothing."""
        assert get_banned_ngram_tokens([1, 1, 1], ngram_size=0) == []

    def test_short_history(self):
        """Histories shorter than n - 1 should ban nothing."""
        assert get_banned_ngram_tokens([1], ngram_size=3) == []

    def test_apply_masks_banned(self):
        """Banned tokens should get -inf scores."""
        scores = torch.zeros(2, 4)
        out = apply_no_repeat_ngram(scores, [[1, 2, 1], [0, 3]], ngram_size=2)
        assert out[0, 2] == float("-inf")
        assert torch.isfinite(out[1]).all()
        assert torch.isfinite(out[0, [0, 1, 3]]).all()


class TestMinLength:
    """Tests for EOS masking before min_length."""

    def test_eos_masked_before_min_length(self):
        """EOS should be masked while the sequence would be too short."""
        scores = torch.zeros(1, 5)
        out = apply_min_length(scores, (2,), cur_len=1, min_length=3)
        assert out[0, 2] == float("-inf")

    def test_eos_allowed_at_min_length(self):
        """EOS should be allowed when it brings the length to min_length."""
        scores = torch.zeros(1, 5)
        out = apply_min_length(scores, (2,), cur_len=2, min_length=3)
        assert torch.isfinite(out).all()

    def test_out_of_vocab_eos_ignored(self):
        """EOS ids outside the vocabulary should be ignored."""
        scores = torch.zeros(1, 3)
        out = apply_min_length(scores, (7,), cur_len=0, min_length=5)
        assert torch.isfinite(out).all()


class TestTemperature:
    """Tests for temperature scaling."""

    def test_scaling(self):
        """Scores should be divided by the temperature."""
        scores = torch.tensor([[1.0, 2.0]])
        assert torch.allclose(apply_temperature(scores, 0.5), torch.tensor([[2.0, 4.0]]))

    def test_one_is_identity(self):
        """Temperature 1.0 should not change scores."""
        scores = torch.randn(3, 4)
        assert torch.equal(apply_temperature(scores, 1.0), scores)

    @pytest.mark.parametrize("temperature", [0.0, -1.0])
    def test_invalid_temperature(self, temperature):
        """Non-positive temperatures should raise InvalidConfig."""
        with pytest.raises(InvalidConfig):
            apply_temperature(torch.zeros(1, 2), temperature)


class TestTopK:
    """Tests for top-k filtering."""

    def test_keeps_k(self):
        """Only the k best tokens should stay finite."""
        scores = torch.tensor([[1.0, 5.0, 3.0, 4.0]])
        out = top_k_filtering(scores, k=2)
        assert torch.isfinite(out).sum() == 2
        assert torch.isfinite(out[0, [1, 3]]).all()

    def test_disabled(self):
        """k=0 and k >= vocab should be no-ops."""
        scores = torch.randn(2, 4)
        assert torch.equal(top_k_filtering(scores, k=0), scores)
        assert torch.equal(top_k_filtering(scores, k=4), scores)

    def test_ties_keep_lower_ids(self):
        """Among tied scores the lower token ids should be kept."""
        scores = torch.tensor([[1.0, 1.0, 1.0, 0.0]])
        out = top_k_filtering(scores, k=2)
        assert torch.isfinite(out[0, [0, 1]]).all()
        assert out[0, 2] == float("-inf")


class TestTopP:
    """Tests for nucleus filtering."""

    def _log_probs(self, probs):
        return torch.log(torch.tensor([probs]))

    def test_keeps_prefix_until_mass_exceeds(self):
        """The prefix up to the token that pushes the mass past p should be kept."""
        scores = self._log_probs([0.5, 0.3, 0.2])
        out = top_p_filtering(scores, p=0.6)
        assert torch.isfinite(out[0, :2]).all()
        assert out[0, 2] == float("-inf")

    def test_keeps_at_least_one(self):
        """At least one token should always survive."""
        scores = self._log_probs([0.5, 0.3, 0.2])
        out = top_p_filtering(scores, p=0.1)
        assert torch.isfinite(out).sum() == 1
        assert torch.isfinite(out[0, 0])

    def test_unsorted_input(self):
        """Filtering should work regardless of token order."""
        scores = self._log_probs([0.1, 0.6, 0.3])
        out = top_p_filtering(scores, p=0.7)
        assert torch.isfinite(out[0, [1, 2]]).all()
        assert out[0, 0] == float("-inf")

    def test_disabled(self):
        """p=1.0 should be a no-op."""
        scores = torch.randn(2, 5)
        assert torch.equal(top_p_filtering(scores, p=1.0), scores)


class TestProcessScores:
    """Tests for the combined pipeline."""

    def test_log_probs_normalized(self):
        """Log-probabilities should sum to one in probability space."""
        config = GenerationConfig(temperature=0.7)
        processed = process_scores(torch.randn(3, 8), [[1], [2], [3]], config, cur_len=0)
        sums = processed.log_probs.exp().sum(dim=-1)
        assert torch.allclose(sums, torch.ones(3), atol=1e-5)

    def test_greedy_skips_top_k(self):
        """Without sampling, top-k should not be applied."""
        config = GenerationConfig(top_k=1)
        processed = process_scores(torch.randn(1, 8), [[0]], config, cur_len=0, sampling=False)
        assert torch.isfinite(processed.filtered).all()

    def test_sampling_applies_top_k(self):
        """With sampling, top-k should filter the selection scores only."""
        config = GenerationConfig(do_sample=True, top_k=2)
        processed = process_scores(torch.randn(1, 8), [[0]], config, cur_len=0, sampling=True)
        assert torch.isfinite(processed.filtered).sum() == 2
        assert torch.isfinite(processed.log_probs).all()

    def test_penalty_before_temperature(self):
        """Repetition penalty should act on raw logits before temperature."""
        config = GenerationConfig(repetition_penalty=2.0, temperature=2.0)
        scores = torch.tensor([[4.0, 0.0]])
        processed = process_scores(scores, [[0]], config, cur_len=0)
        # (4 / 2) / 2 = 1 vs 0 / 2 = 0
        expected = torch.log_softmax(torch.tensor([[1.0, 0.0]]), dim=-1)
        assert torch.allclose(processed.log_probs, expected)

    def test_ngram_and_min_length_masking(self):
        """Banned n-grams and early EOS should both be masked."""
        config = GenerationConfig(no_repeat_ngram_size=2, min_length=5, eos_token_ids=(3,))
        processed = process_scores(torch.zeros(1, 4), [[1, 2, 1]], config, cur_len=1)
        assert processed.log_probs[0, 2] == float("-inf")
        assert processed.log_probs[0, 3] == float("-inf")
        assert math.isclose(processed.log_probs[0, 0].exp().item(), 0.5, rel_tol=1e-5)

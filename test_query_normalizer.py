from __future__ import annotations

import pytest

from domains.equities.normalizer import QueryNormalizer, infer_limit, merge_limit


def test_normalizer_corrects_misspelled_screen():
    normalizer = QueryNormalizer()

    out = normalizer.normalize("stoks with pe ratoi less then 15")

    assert out == "stocks with pe ratio less than 15"


def test_normalizer_rewrites_operators_and_magnitudes():
    normalizer = QueryNormalizer()

    out = normalizer.normalize("Show me top 10 stocks with P/E < 15 and mcap > 5k!")

    assert out == "show me top 10 stocks with p/e less than 15 and market cap greater than 5000"


def test_normalizer_handles_compound_operators_before_single():
    normalizer = QueryNormalizer()

    assert normalizer.normalize("debt equity <= 1") == "debt to equity less than or equal 1"
    assert normalizer.normalize("stocks with beta >= 2") == "stocks with beta greater than or equal 2"
    assert normalizer.normalize("stocks with beta != 2") == "stocks with beta not equal 2"


def test_normalizer_expands_abbreviation_only_after_first_word():
    normalizer = QueryNormalizer()

    assert normalizer.normalize("stocks with high roe") == "stocks with high return on equity"
    assert normalizer.normalize("eps above 10").startswith("eps ")


def test_normalizer_converts_indian_magnitudes():
    normalizer = QueryNormalizer()

    assert normalizer.normalize("market cap over 1000 crore") == "market cap over 10000000000"
    assert normalizer.normalize("price under 2.5m") == "price under 2500000"


@pytest.mark.parametrize(
    "raw",
    [
        "stoks with pe ratoi less then 15",
        "Show me top 10 stocks with P/E < 15 and mcap > 5k!",
        "give me stocks under 2.5m",
        "list nifty 50 gainers",
        "find companys with div yield > 3",
        "stocks with roe ratio above 20 and pe < 30",
        "   ",
        "get me midcap stocks near 52-week low",
        "debit equity ratio below 1",
        "promotr hold above 50",
        "merket capitalization above 1000",
        "stocks with div yld above 3",
    ],
)
def test_normalizer_is_idempotent(raw):
    normalizer = QueryNormalizer()

    once = normalizer.normalize(raw)

    assert normalizer.normalize(once) == once


def test_normalizer_applies_phrases_created_by_word_fixes():
    normalizer = QueryNormalizer()

    assert normalizer.normalize("debit equity ratio below 1") == "debt to equity ratio below 1"
    assert normalizer.normalize("promotr hold above 50") == "promoter holding above 50"
    assert normalizer.normalize("merket capitalization above 1000") == "market cap above 1000"
    assert normalizer.normalize("stocks with div yld above 3") == "stocks with dividend yield above 3"


def test_normalizer_request_verbs_are_guarded():
    normalizer = QueryNormalizer()

    assert normalizer.normalize("show stocks in nifty 50") == "show me stocks in nifty 50"
    assert normalizer.normalize("show me stocks in nifty 50") == "show me stocks in nifty 50"
    assert normalizer.normalize("give me losers") == "show me losers"


def test_normalizer_is_total():
    normalizer = QueryNormalizer()

    assert normalizer.normalize(None) == ""
    assert normalizer.normalize("?!") == ""


def test_was_corrected_ignores_case_only_changes():
    normalizer = QueryNormalizer()

    assert not normalizer.was_corrected("Top Gainers", normalizer.normalize("Top Gainers"))
    assert normalizer.was_corrected("stoks", normalizer.normalize("stoks"))


def test_infer_limit_patterns():
    assert infer_limit("top 10 stocks by volume") == 10
    assert infer_limit("show me five stocks in loss") == 5
    assert infer_limit("top twenty gainers") == 20
    assert infer_limit("show me stocks with low pe") is None
    assert infer_limit("") is None


def test_merge_limit_keeps_larger_signal():
    assert merge_limit(10, 25) == 25
    assert merge_limit(None, 5) == 5
    assert merge_limit(None, None) is None

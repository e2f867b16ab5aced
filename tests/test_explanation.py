"""
Tests for the explanation text parser and header vocabulary.
"""
import pytest

from ai.explanation import (
    ExplanationParser,
    HeaderVocabulary,
    HeaderVocabularyError,
    ParsedExplanation,
    match_quality,
    parse,
)

CURRENT_FORMAT = """# Explicit LinkedIn Matches:
- Led payments migration at Bank X
- [List specific roles that mention the query]

# Inferred LinkedIn Matches:
• Ten years of batch processing on z/OS
* No inferred matches found

# LinkedIn Relevance Score: 8/10

# Explicit Crosslake Matches:
- No explicit Crosslake matches found

# Inferred Crosslake Matches:
- Modernized a C# billing service

# Crosslake History Score: 5
"""

LEGACY_FORMAT = """# Relevant LinkedIn History:
- COBOL developer at Insurer Y (2010-2016)
# LinkedIn Relevance Score: 6
# Relevant Crosslake History:
- Mainframe assessment for Client Z
# Crosslake History Score: 4
"""


@pytest.fixture
def parser():
    return ExplanationParser(HeaderVocabulary(fuzzy_threshold=88), delimiter="#")


class TestParse:

    def test_explicit_match_and_score(self, parser):
        text = "Explicit LinkedIn Matches:\n- Led payments migration at Bank X\nLinkedIn Relevance Score: 8/10"

        result = parser.parse(text)

        assert result.parsed
        assert result.linkedin.explicit == ["Led payments migration at Bank X"]
        assert result.linkedin.score == 8

    def test_current_format(self, parser):
        result = parser.parse(CURRENT_FORMAT)

        assert result.linkedin.explicit == ["Led payments migration at Bank X"]
        assert result.linkedin.inferred == ["Ten years of batch processing on z/OS"]
        assert result.linkedin.score == 8
        assert result.crosslake.explicit == []
        assert result.crosslake.inferred == ["Modernized a C# billing service"]
        assert result.crosslake.score == 5
        assert result.combined_score == 7
        assert result.raw_text == CURRENT_FORMAT

    def test_legacy_headers(self, parser):
        result = parser.parse(LEGACY_FORMAT)

        assert result.linkedin.explicit == ["COBOL developer at Insurer Y (2010-2016)"]
        assert result.linkedin.score == 6
        assert result.crosslake.explicit == ["Mainframe assessment for Client Z"]
        assert result.crosslake.score == 4

    def test_score_without_number_defaults_to_zero(self, parser):
        result = parser.parse("# Explicit LinkedIn Matches:\n- COBOL\n# LinkedIn Relevance Score: not rated")

        assert result.parsed
        assert result.linkedin.score == 0
        assert not result.linkedin.has_score

    def test_markdown_bold_headers(self, parser):
        result = parser.parse("## **Inferred Crosslake Matches:**\n- Led DB2 tuning\n## **Crosslake History Score:** 9")

        assert result.crosslake.inferred == ["Led DB2 tuning"]
        assert result.crosslake.score == 9

    def test_alternate_segmentation(self):
        # A delimiter that never occurs forces the capitalized-line split
        parser = ExplanationParser(delimiter="@@")
        text = "Some preamble\nInferred LinkedIn Match\n- Assembler on System/370\nCrosslake Score 3"

        result = parser.parse(text)

        assert result.parsed
        assert result.linkedin.inferred == ["Assembler on System/370"]
        assert result.crosslake.score == 3

    @pytest.mark.parametrize("text", [
        "This practitioner has strong mainframe skills and would be a good fit.",
        "Summary\nThe LinkedIn relevance is strong, with 15 years of COBOL on z/OS.",
        "Crosslake evidence (inferred)\n- Led DB2 tuning",
        "",
        "   \n  ",
        None,
    ])
    def test_unrecognized_text_is_unparsed(self, parser, text):
        result = parser.parse(text)

        assert not result.parsed
        assert result.raw_text == (text or "")
        assert result.linkedin.explicit == []
        assert result.combined_score == 0

    def test_keyword_header_needs_colon(self, parser):
        result = parser.parse("# Crosslake evidence (inferred):\n- Led DB2 tuning")

        assert result.parsed
        assert result.crosslake.inferred == ["Led DB2 tuning"]

    def test_long_title_is_not_a_header(self, parser):
        result = parser.parse("# The LinkedIn relevance score is strong for this role: 15\n- COBOL")

        assert not result.parsed

    def test_headers_with_only_placeholders_are_unparsed(self, parser):
        result = parser.parse("# Explicit LinkedIn Matches:\n- [List matches here]\n- No explicit matches found")

        assert not result.parsed

    def test_module_level_parse(self):
        assert parse(CURRENT_FORMAT).linkedin.score == 8


class TestHeaderVocabulary:

    def test_exact_alias_case_insensitive(self):
        rule = HeaderVocabulary().match("EXPLICIT LINKEDIN MATCHES: anything")

        assert (rule.source, rule.kind) == ("linkedin", "explicit")

    def test_fuzzy_alias(self):
        rule = HeaderVocabulary(fuzzy_threshold=88).match("Explicit LinkedIn Match:")

        assert (rule.source, rule.kind) == ("linkedin", "explicit")

    def test_keyword_fallback(self):
        rule = HeaderVocabulary().match("Crosslake evidence (inferred)")

        assert (rule.source, rule.kind) == ("crosslake", "inferred")

    def test_unknown_header(self):
        assert HeaderVocabulary().match("Summary:") is None

    def test_extend(self):
        vocabulary = HeaderVocabulary()
        parser = ExplanationParser(vocabulary, delimiter="#")
        text = "# Verified Work Experience:\n- IMS DB at Bank Q"

        assert not parser.parse(text).parsed

        vocabulary.extend("linkedin", "explicit", aliases=["Verified Work Experience"])
        result = parser.parse(text)

        assert result.linkedin.explicit == ["IMS DB at Bank Q"]

    def test_extend_rejects_unknown_source(self):
        with pytest.raises(HeaderVocabularyError):
            HeaderVocabulary().extend("github", "explicit", aliases=["GitHub Matches"])


class TestScores:

    @pytest.mark.parametrize("score, label", [
        (10, "Excellent Match"),
        (8, "Excellent Match"),
        (7, "Good Match"),
        (5, "Good Match"),
        (4, "Fair Match"),
        (0, "Fair Match"),
    ])
    def test_match_quality(self, score, label):
        assert match_quality(score) == label

    def test_combined_score_rounds_half_up(self):
        result = ParsedExplanation()
        result.linkedin.score = 8
        result.crosslake.score = 5

        assert result.combined_score == 7

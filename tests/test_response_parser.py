"""Unit tests for recsynth.generation.parser."""
import json

from recsynth.generation.errors import GenerationErrorKind
from recsynth.generation.parser import parse_recommendations

from tests.fakes import make_response


class TestParseRecommendations:
    """Tests for parse_recommendations."""

    def test_valid_response(self):
        # Act
        result = parse_recommendations(make_response(n_movies=10, n_tv=10))

        # Assert
        assert result.ok
        assert len(result.recommendations.movies) == 10
        assert len(result.recommendations.tv_series) == 10
        assert result.recommendations.movies[0].external_id == "tt0000000"
        assert result.recommendations.dropped_items == 0

    def test_json_wrapped_in_markdown_fence(self):
        text = "Here you go:\n```json\n" + make_response(n_movies=2, n_tv=1) + "\n```"

        result = parse_recommendations(text)

        assert result.ok
        assert result.recommendations.total == 3

    def test_missing_array_defaults_to_empty(self):
        """Test that a missing array is tolerated as a partial response."""
        text = json.dumps({"movies": [{"title": "Heat", "imdbID": "tt0113277", "reason": "Mann"}]})

        result = parse_recommendations(text)

        assert result.ok
        assert result.recommendations.tv_series == []
        assert result.defaulted_fields == ["tv_series"]

    def test_non_list_array_defaults_to_empty(self):
        text = json.dumps({"movies": "none", "tv_series": [{"title": "Severance"}]})

        result = parse_recommendations(text)

        assert result.ok
        assert result.recommendations.movies == []
        assert result.recommendations.tv_series[0].title == "Severance"

    def test_invalid_items_are_dropped_individually(self):
        # Arrange
        text = json.dumps({
            "movies": [
                {"title": "Heat"},
                {"reason": "no title"},
                {"title": "   "},
                "just a string",
            ],
            "tv_series": [{"title": "Dark", "imdb_id": "tt5753856"}],
        })

        # Act
        result = parse_recommendations(text)

        # Assert
        assert result.ok
        assert [s.title for s in result.recommendations.movies] == ["Heat"]
        assert result.recommendations.tv_series[0].external_id == "tt5753856"
        assert result.recommendations.dropped_items == 3

    def test_max_results_truncates_each_list(self):
        result = parse_recommendations(make_response(n_movies=10, n_tv=10), max_results=3)

        assert len(result.recommendations.movies) == 3
        assert len(result.recommendations.tv_series) == 3

    def test_both_arrays_missing_is_malformed(self):
        result = parse_recommendations(json.dumps({"films": []}))

        assert not result.ok
        assert result.error.kind == GenerationErrorKind.MALFORMED_RESPONSE

    def test_every_item_invalid_is_malformed(self):
        body = json.dumps({"movies": [{"reason": "no title"}], "tv_series": [42]})

        result = parse_recommendations(body)

        assert not result.ok
        assert result.error.kind == GenerationErrorKind.MALFORMED_RESPONSE
        assert "dropped_items=2" in str(result.error)

    def test_both_arrays_empty_is_malformed(self):
        result = parse_recommendations(json.dumps({"movies": [], "tv_series": []}))

        assert result.error.kind == GenerationErrorKind.MALFORMED_RESPONSE

    def test_not_json_is_malformed(self):
        result = parse_recommendations("I cannot help with that.")

        assert not result.ok
        assert result.error.kind == GenerationErrorKind.MALFORMED_RESPONSE
        assert not result.error.retryable

    def test_empty_body_is_malformed(self):
        assert parse_recommendations("").error.kind == GenerationErrorKind.MALFORMED_RESPONSE
        assert parse_recommendations(None).error.kind == GenerationErrorKind.MALFORMED_RESPONSE

    def test_json_array_is_malformed(self):
        result = parse_recommendations("[1, 2, 3]")

        assert not result.ok

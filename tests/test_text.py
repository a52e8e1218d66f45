"""Tests for HTML-to-text conversion and reading stats."""

from utils.text import calculate_reading_stats, html_to_text


class TestHtmlToText:
    def test_strips_tags_without_fusing_words(self):
        assert html_to_text("<p>one</p><p>two</p>") == "one two"

    def test_drops_scripts_styles_and_comments(self):
        html = "<style>p{}</style><p>kept</p><script>var x = 1;</script><!-- gone -->"

        assert html_to_text(html) == "kept"

    def test_unescapes_entities(self):
        assert html_to_text("<p>Fish &amp; chips&nbsp;today</p>") == "Fish & chips today"


class TestReadingStats:
    def test_225_words_is_one_minute(self):
        content = "<p>" + " ".join(["word"] * 225) + "</p>"

        stats = calculate_reading_stats(content)

        assert stats.word_count == 225
        assert stats.reading_time_seconds == 60

    def test_rounds_to_nearest_second(self):
        stats = calculate_reading_stats(" ".join(["w"] * 100))

        assert stats.reading_time_seconds == 27

    def test_empty_content(self):
        stats = calculate_reading_stats("<div></div>")

        assert stats == (0, 0)

"""Unit tests for markdown processing functions."""

import unittest

from UpNote_Converter import (
    decode_asset_name,
    extract_asset_references,
    normalize_content,
)


class TestNormalizeContent(unittest.TestCase):
    """Tests for normalize_content function."""

    def test_math_dollars_and_whitespace(self):
        """Doubled dollars collapse and math spans are trimmed."""
        self.assertEqual(normalize_content("Energy $$ E=mc^2 $$ rest"), "Energy $E=mc^2$ rest")

    def test_doubled_backslash_before_letter(self):
        self.assertEqual(normalize_content("value\\\\to 5"), "value\\to 5")

    def test_backslash_before_space_removed(self):
        self.assertEqual(normalize_content("end.\\ "), "end. ")

    def test_latex_commands_survive(self):
        self.assertEqual(normalize_content("$\\alpha + \\beta$"), "$\\alpha + \\beta$")
        self.assertEqual(normalize_content("50\\% and a\\=b"), "50\\% and a\\=b")

    def test_stray_escapes_removed(self):
        self.assertEqual(normalize_content("snake\\_case \\*bold\\*"), "snake_case *bold*")

    def test_line_breaks_removed(self):
        result = normalize_content("a<br>b<br/>c<br />d")
        self.assertEqual(result, "abcd")
        for tag in ("<br>", "<br/>", "<br />"):
            self.assertNotIn(tag, result)

    def test_inline_tags_removed(self):
        text = "<em>a</em> <strong>b</strong> <u>c</u> <s>d</s> <code>e</code> <mark>f</mark>"
        self.assertEqual(normalize_content(text), "a b c d e f")

    def test_other_tags_removed_case_insensitive(self):
        self.assertEqual(normalize_content("<DIV class='x'>text</DIV>"), "text")

    def test_entities(self):
        self.assertEqual(normalize_content("1 &lt; 2 &amp; 3&nbsp;4"), "1 < 2 & 3 4")

    def test_entity_decoded_tag_is_stripped(self):
        """Entities are decoded before the generic tag pass runs."""
        self.assertEqual(normalize_content("a &lt;b&gt; c"), "a  c")

    def test_doubly_escaped_tag_is_stripped(self):
        """Repeated passes unescape twice, so the decoded tag is removed."""
        self.assertEqual(normalize_content("a &amp;lt;div&amp;gt; b"), "a  b")
        self.assertEqual(normalize_content("x &amp;amp; y"), "x & y")

    def test_newpage_removed(self):
        self.assertEqual(normalize_content("Text\n\\newpage\nMore"), "Text\n\nMore")
        self.assertEqual(normalize_content("Text\n\\NEWPAGE\nMore"), "Text\n\nMore")

    def test_custom_latex_commands(self):
        result = normalize_content("a\\clearpage b", latex_commands=[r"\\clearpage"])
        self.assertEqual(result, "a b")

    def test_unterminated_math_span(self):
        self.assertEqual(normalize_content("costs $ 5 today"), "costs $ 5 today")
        self.assertEqual(normalize_content("$ a $ and $ b"), "$a$ and $ b")

    def test_multiple_math_spans(self):
        self.assertEqual(normalize_content("$ x $ then $ y $"), "$x$ then $y$")

    def test_plain_text_unchanged(self):
        text = "# Title\n\n- item [link](https://example.com)\n"
        self.assertEqual(normalize_content(text), text)

    def test_empty(self):
        self.assertEqual(normalize_content(""), "")

    def test_idempotent(self):
        samples = [
            "Energy $$ E=mc^2 $$ rest",
            "&amp;lt;br&amp;gt; text",
            "\\\\\\\\\\\\ many backslashes",
            "$$$$ $$$ $",
            "<em>&lt;s&gt;x&lt;/s&gt;</em>",
            "value\\\\to 5 and end.\\ ",
            "$ \\\\frac{1}{2} $ \\newpage",
        ]
        for text in samples:
            once = normalize_content(text)
            self.assertEqual(normalize_content(once), once, msg=repr(text))


class TestExtractAssetReferences(unittest.TestCase):
    """Tests for extract_asset_references function."""

    def test_encoded_image(self):
        self.assertEqual(extract_asset_references("![x](Files/image%206.png)"), {"image 6.png"})

    def test_reference_style_image(self):
        self.assertEqual(extract_asset_references("![diagram][fig1.png]"), {"fig1.png"})

    def test_reference_definition(self):
        text = "![logo][logo]\n\n[logo]: Files/logo%20big.png"
        self.assertEqual(extract_asset_references(text), {"logo", "logo big.png"})

    def test_html_img_and_anchor(self):
        text = '<img width="10" src="Files/a.png"> <a class="x" href=\'Files/doc.pdf\'>doc</a>'
        self.assertEqual(extract_asset_references(text), {"a.png", "doc.pdf"})

    def test_tag_syntax_case_insensitive(self):
        self.assertEqual(extract_asset_references('<IMG SRC="Files/a.png">'), {"a.png"})

    def test_query_and_directories_dropped(self):
        text = '<a href="https://example.com/docs/report.pdf?download=1#p2">r</a>'
        self.assertEqual(extract_asset_references(text), {"report.pdf"})

    def test_windows_separators(self):
        self.assertEqual(extract_asset_references("![x](Files\\sub\\a.png)"), {"a.png"})

    def test_wrapped_target_and_title(self):
        text = '![x](<Files/my file.png>) ![y](Files/b.png "A title")'
        self.assertEqual(extract_asset_references(text), {"my file.png", "b.png"})

    def test_case_insensitive_identity(self):
        result = extract_asset_references("![a](Files/Photo.PNG) ![b](Files/photo.png)")
        self.assertEqual(len(result), 1)
        self.assertEqual(result, {"Photo.PNG"})

    def test_undecodable_name_kept(self):
        self.assertEqual(extract_asset_references("![x](Files/bad%FF.png)"), {"bad%FF.png"})

    def test_plain_links_are_not_assets(self):
        self.assertEqual(extract_asset_references("[doc](Files/doc.pdf) and text"), set())

    def test_no_references(self):
        self.assertEqual(extract_asset_references(""), set())
        self.assertEqual(extract_asset_references("# Title\nJust text."), set())


class TestDecodeAssetName(unittest.TestCase):
    """Tests for decode_asset_name function."""

    def test_decodes(self):
        self.assertEqual(decode_asset_name("file%28%201%29.pdf"), "file( 1).pdf")

    def test_invalid_utf8_kept_raw(self):
        self.assertEqual(decode_asset_name("x%E9.png"), "x%E9.png")


if __name__ == "__main__":
    unittest.main()

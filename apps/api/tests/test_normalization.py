from helpdesk.utils.normalization import (
    NO_SUBJECT,
    clean_message_id,
    clean_subject,
    html_to_text,
    name_from_email,
    normalize_email,
    parse_references,
    strip_quoted_html,
)


class TestSubjects:
    def test_reply_and_forward_prefixes_are_dropped(self):
        assert clean_subject("RE: Fwd: AW: Hello   world") == "Hello world"

    def test_numbered_reply_prefix(self):
        assert clean_subject("Re[2]: Invoice") == "Invoice"

    def test_empty_subject_gets_placeholder(self):
        assert clean_subject("") == NO_SUBJECT
        assert clean_subject(None) == NO_SUBJECT
        assert clean_subject("Re: ") == NO_SUBJECT

    def test_subject_is_clamped(self):
        assert len(clean_subject("x" * 400)) == 255


class TestMessageIds:
    def test_brackets_and_whitespace_are_stripped(self):
        assert clean_message_id("  <abc@x.com> ") == "abc@x.com"

    def test_empty_values_become_none(self):
        assert clean_message_id("<>") is None
        assert clean_message_id("   ") is None
        assert clean_message_id(None) is None

    def test_references_keep_order_and_drop_duplicates(self):
        header = "<a@x.com>\r\n <b@x.com> <a@x.com>"

        assert parse_references(header) == ["a@x.com", "b@x.com"]

    def test_unbracketed_references_are_split_on_whitespace(self):
        assert parse_references("a@x.com b@x.com") == ["a@x.com", "b@x.com"]

    def test_reference_list_input(self):
        assert parse_references(["<a@x.com>", "b@x.com"]) == ["a@x.com", "b@x.com"]


class TestAddresses:
    def test_display_name_and_case_are_removed(self):
        assert normalize_email("Jane Doe <Jane.Doe@Example.COM>") == "jane.doe@example.com"

    def test_values_without_at_are_rejected(self):
        assert normalize_email("not-an-address") is None
        assert normalize_email(None) is None

    def test_name_from_email(self):
        assert name_from_email("jane.doe_smith@example.com") == "Jane Doe Smith"


class TestQuotedHistory:
    def test_gmail_quote_is_removed(self):
        html = '<p>New answer</p><div class="gmail_quote">On Monday Bob wrote: old</div>'

        assert strip_quoted_html(html) == "<p>New answer</p>"

    def test_outlook_reply_container_is_removed(self):
        html = '<p>Thanks</p><div id="divRplyFwdMsg"><b>From:</b> Bob</div><p>old</p>'

        assert strip_quoted_html(html) == "<p>Thanks</p>"

    def test_cite_blockquote_is_removed_but_plain_blockquote_kept(self):
        html = (
            '<p>See below</p><blockquote type="cite">old text</blockquote>'
            "<blockquote>a real quote</blockquote>"
        )

        result = strip_quoted_html(html)

        assert "old text" not in result
        assert "a real quote" in result


def test_html_to_text():
    html = "<style>p {color: red}</style><p>Tom &amp; Jerry</p><p>Line<br>break</p>"

    assert html_to_text(html) == "Tom & Jerry\nLine\nbreak"

import pytest

from payload_guard.app.config import SanitizationProfile
from payload_guard.engines.markup_filter import MarkupFilter


def _filter(**fields):
    return MarkupFilter(SanitizationProfile(**fields))


def test_allowed_tags_kept_and_script_removed():
    f = _filter(allowed_tags={"b", "i"})
    assert f.clean("<b>ok</b><script>bad</script>") == "<b>ok</b>"


def test_empty_allow_list_strips_every_tag():
    f = _filter()
    assert f.clean("<b>bold</b> and <i>italic</i>") == "bold and italic"


def test_attributes_are_filtered_per_tag():
    f = _filter(allowed_tags={"a", "b"}, allowed_attributes={"a": {"href"}})
    out = f.clean('<a href="https://example.com" onclick="steal()">link</a><b title="t">x</b>')
    assert out == '<a href="https://example.com">link</a><b>x</b>'


def test_unknown_tags_escaped_when_not_stripped():
    f = _filter(allowed_tags={"b"}, strip_unknown_tags=False)
    assert f.clean("<u>hi</u>") == "&lt;u&gt;hi&lt;/u&gt;"


def test_unknown_tag_content_kept_by_default():
    f = _filter(allowed_tags={"b"})
    assert f.clean("<div>keep text</div>") == "keep text"


def test_unknown_tag_body_stripped():
    f = _filter(allowed_tags={"b"}, strip_unknown_tag_body=True)
    assert f.clean("<b>keep</b><div>drop <b>this</b></div>tail") == "<b>keep</b>tail"


def test_body_stripping_does_not_touch_allowed_prefix_names():
    f = _filter(allowed_tags={"b"}, strip_unknown_tag_body=True)
    assert f.clean("<b>a</b><blockquote>q</blockquote>") == "<b>a</b>"


def test_empty_tags_dropped():
    f = _filter(allowed_tags={"p", "b"})
    assert f.clean("<p></p>text<b> </b>") == "text"


def test_nested_empty_tags_dropped():
    f = _filter(allowed_tags={"p", "b"})
    assert f.clean("<p><b></b></p>x") == "x"


def test_empty_tags_kept_when_allowed():
    f = _filter(allowed_tags={"p"}, allow_empty_tags=True)
    assert f.clean("<p></p>text") == "<p></p>text"


def test_tags_beyond_max_depth_unwrapped():
    f = _filter(allowed_tags={"b", "i", "em"}, max_tag_depth=2)
    assert f.clean("<b><i><em>deep</em></i></b>") == "<b><i>deep</i></b>"


def test_zero_tag_depth_keeps_text_only():
    f = _filter(allowed_tags={"b"}, max_tag_depth=0)
    assert f.clean("<b>x</b>") == "x"


def test_void_elements_do_not_count_towards_depth():
    f = _filter(allowed_tags={"b", "br"}, max_tag_depth=1)
    assert f.clean("<b>a<br>b</b>") == "<b>a<br>b</b>"


@pytest.mark.parametrize("text", [
    "<b>ok</b><script>bad</script>",
    "<div><p>x</p></div><i></i>",
    "plain & simple < text",
    "<b><i><em>deep</em></i></b>",
    '<a href="javascript:alert(1)">x</a>',
])
@pytest.mark.parametrize("fields", [
    {"allowed_tags": {"b", "i"}},
    {"allowed_tags": {"b", "i", "em", "a", "p"}, "allowed_attributes": {"a": {"href"}}, "max_tag_depth": 1},
    {"allowed_tags": {"b"}, "strip_unknown_tags": False},
    {"allowed_tags": {"p"}, "strip_unknown_tag_body": True},
])
def test_clean_is_idempotent(text, fields):
    f = _filter(**fields)
    once = f.clean(text)
    assert f.clean(once) == once

from utils import (
    clean_html_to_markdown,
    first_image_src,
    humanize_list,
    humanize_tag,
    split_tags,
    titleize_tag,
    truncate_string,
    validate_url,
)


def test_clean_html_resolves_relative_urls_with_base():
    html = '<p><a href="details.html">Read more</a><img src="../img/photo.png" alt="Photo"/></p>'
    markdown = clean_html_to_markdown(html, base_url="https://example.com/articles/2025/")

    assert "[Read more](https://example.com/articles/2025/details.html)" in markdown
    # Notifications carry their image separately
    assert "photo.png" not in markdown


def test_clean_html_relative_urls_without_base_neutralized():
    html = '<p><a href="details.html">Read more</a><img src="img/photo.png" alt="Photo"/></p>'
    markdown = clean_html_to_markdown(html)

    assert "[Read more](#)" in markdown
    assert "img/photo.png" not in markdown


def test_clean_html_strips_scripts_and_handlers():
    html = '<p onclick="steal()">Hi <a href="javascript:alert(1)">there</a><script>alert(2)</script></p>'
    markdown = clean_html_to_markdown(html)

    assert "alert" not in markdown
    assert "steal" not in markdown
    assert "Hi" in markdown


def test_first_image_src_skips_images_without_src():
    html = '<div><img alt="no source"/><img src=" https://example.com/a.png "/><img src="b.png"/></div>'

    assert first_image_src(html) == "https://example.com/a.png"
    assert first_image_src("<p>no images</p>") is None
    assert first_image_src("") is None


def test_tag_helpers():
    assert split_tags("  hatsune_miku  kagamine_rin ") == ["hatsune_miku", "kagamine_rin"]
    assert split_tags(None) == []
    assert humanize_tag("some_artist") == "some artist"
    assert titleize_tag("kagamine_rin_(cosplay)") == "Kagamine Rin (Cosplay)"


def test_humanize_list():
    assert humanize_list([]) == ""
    assert humanize_list(["a"]) == "a"
    assert humanize_list(["a", "b"]) == "a and b"
    assert humanize_list(["a", "", "b", "c"]) == "a, b, and c"


def test_truncate_string():
    assert truncate_string("short", 10) == "short"
    assert truncate_string("abcdefghij", 8) == "abcde..."
    assert truncate_string("abcdef", 2) == "ab"


def test_validate_url():
    assert validate_url("https://example.com/feed")
    assert not validate_url("ftp://example.com/feed")
    assert not validate_url("   ")
    assert not validate_url(None)

"""HTML sanitization for ingested items and tag stripping for raw output."""

from __future__ import annotations

from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Comment

ALLOWED_TAGS = frozenset({
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "p", "a", "ul", "ol",
    "nl", "li", "b", "i", "strong", "em", "strike", "code", "hr", "br", "div",
    "table", "thead", "caption", "tbody", "tr", "th", "td", "pre", "img",
})

ALLOWED_ATTRIBUTES = {
    "a": frozenset({"href", "name", "target"}),
    "img": frozenset({"src", "alt", "title", "width", "height"}),
    "*": frozenset({"class", "id"}),
}

ALLOWED_SCHEMES = frozenset({"http", "https", "mailto"})
URL_ATTRIBUTES = frozenset({"href", "src"})

# Dropped together with everything inside them
DISCARD_CONTENT_TAGS = frozenset({"script", "style", "textarea", "option", "noscript"})


def _safe_url(value: str) -> bool:
    value = value.strip()
    if value.startswith("//"):
        return True
    scheme = urlsplit(value).scheme.lower()
    # No scheme means a relative URL
    return not scheme or scheme in ALLOWED_SCHEMES


def _allowed_attribute(tag: str, attr: str, value) -> bool:
    if attr not in ALLOWED_ATTRIBUTES.get(tag, frozenset()) and attr not in ALLOWED_ATTRIBUTES["*"]:
        return False
    if attr in URL_ATTRIBUTES:
        return isinstance(value, str) and _safe_url(value)
    return True


def sanitize_html(html: str) -> str:
    """Reduce markup to the allow-listed tags, attributes and URL schemes.

    Disallowed tags are unwrapped so their text survives; script-like tags are
    removed with their content.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        if tag.decomposed:
            continue
        if tag.name in DISCARD_CONTENT_TAGS:
            tag.decompose()
        elif tag.name not in ALLOWED_TAGS:
            tag.unwrap()
        else:
            tag.attrs = {
                attr: value for attr, value in tag.attrs.items()
                if _allowed_attribute(tag.name, attr, value)
            }

    return str(soup)


def strip_html(html: str) -> str:
    """Return the text content of an HTML fragment.

    Entities are decoded, except that angle brackets stay escaped so escaped
    markup such as ``&lt;i&gt;`` cannot come back out as a tag.
    """
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text()
    return text.replace("<", "&lt;").replace(">", "&gt;")

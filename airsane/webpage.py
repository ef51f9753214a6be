"""HTML page rendering and simple element builders."""

from __future__ import annotations

import abc
import io
from collections.abc import Iterable, Mapping

from .message import HTTP_HEADER_CONTENT_TYPE

_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "'": "&apos;",
    '"': "&quot;",
    "\n": "<br>\n",
}


def html_escape(s: str) -> str:
    """Escape HTML special characters; newlines become line breaks."""
    return "".join(_ESCAPES.get(c, c) for c in s)


def numtostr(d: float) -> str:
    """Format a number the way a default C-locale stream does."""
    return f"{d:g}"


def _as_text(value: str | float) -> str:
    return value if isinstance(value, str) else numtostr(value)


class Element:
    """An HTML element with attributes and inner content."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        self.attributes: dict[str, str] = {}
        self.text = ""

    def add_text(self, text: str | float):
        """Append text, escaping it first."""
        return self.add_content(html_escape(_as_text(text)))

    def add_content(self, content: str):
        """Append raw HTML content."""
        self.text += content
        return self

    def set_attribute(self, key: str, value: str | float):
        self.attributes[key] = _as_text(value)
        return self

    def __str__(self) -> str:
        parts = [f"<{self.tag}"]
        parts.extend(f" {key}='{html_escape(value)}'" for key, value in self.attributes.items())
        parts.append(">")
        if self.text:
            parts.append(f"{self.text}</{self.tag}>")
        return "".join(parts)


class Br(Element):
    def __init__(self) -> None:
        super().__init__("br")

    def __str__(self) -> str:
        return super().__str__() + "\n"


class Heading(Element):
    def __init__(self, level: int) -> None:
        super().__init__("h" + numtostr(level))


class Paragraph(Element):
    def __init__(self) -> None:
        super().__init__("p")

    def __str__(self) -> str:
        return super().__str__() + "\n"


class List(Element):
    """An unordered list."""

    def __init__(self) -> None:
        super().__init__("ul")

    def add_item(self, item: str | Element) -> "List":
        self.add_content(f"<li>{item}</li>")
        return self


class Anchor(Element):
    def __init__(self, href: str = "") -> None:
        super().__init__("a")
        self.set_attribute("href", href)


class FormField(Element):
    """A form control with an optional label."""

    def __init__(self, tag: str) -> None:
        super().__init__(tag)
        self.label = ""

    def set_name(self, name: str):
        return self.set_attribute("name", name)

    def set_value(self, value: str):
        return self.set_attribute("value", value)

    def set_label(self, label: str):
        """Set the label text; "*" uses the field name as label."""
        self.label = label
        return self

    def label_html(self) -> str:
        if not self.label:
            return ""
        name = self.attributes.get("name", "")
        label = name if self.label == "*" else self.label
        return f"<label for='{name}'>{label}</label>\n"

    def __str__(self) -> str:
        return self.label_html() + super().__str__()


class FormInput(FormField):
    def __init__(self, input_type: str) -> None:
        super().__init__("input")
        self.set_attribute("type", input_type)


class FormSelect(FormField):
    """A drop-down selection; the "value" attribute marks the selected option."""

    def __init__(self) -> None:
        super().__init__("select")
        self.options: dict[str, str] = {}

    def add_option(self, value: str, text: str = "") -> "FormSelect":
        self.options[value] = text or value
        return self

    def add_options(self, options: Mapping[str, str] | Iterable[str]) -> "FormSelect":
        if isinstance(options, Mapping):
            for value, text in options.items():
                self.add_option(value, text)
        else:
            for value in options:
                self.add_option(value)
        return self

    def __str__(self) -> str:
        parts = [self.label_html(), "<select autocomplete='off'"]
        selected = ""
        for key, value in self.attributes.items():
            if key == "value":
                selected = value
            else:
                parts.append(f" {key}='{value}'")
        parts.append(">\n")
        for value, text in self.options.items():
            mark = " selected" if value == selected else ""
            parts.append(f"<option value='{value}'{mark}>{text}</option>\n")
        parts.append("</select>\n")
        return "".join(parts)


class WebPage(abc.ABC):
    """Base class for HTML pages; subclasses write their body in on_render()."""

    def __init__(self) -> None:
        self.title = ""
        self.style = ""
        self.favicon_type = ""
        self.favicon_url = ""
        self.out: io.StringIO | None = None
        self.request = None
        self.response = None
        self.add_style("body { font-family:sans-serif }")

    def set_title(self, title: str) -> "WebPage":
        self.title = title
        return self

    def set_favicon(self, mime_type: str, url: str) -> "WebPage":
        self.favicon_type = mime_type
        self.favicon_url = url
        return self

    def clear_favicon(self) -> "WebPage":
        self.favicon_type = ""
        self.favicon_url = ""
        return self

    def add_style(self, style: str) -> "WebPage":
        self.style += style + "\n"
        return self

    def clear_style(self) -> "WebPage":
        self.style = ""
        return self

    def render(self, request, response) -> "WebPage":
        """Render the page and send it, unless on_render() sent a response itself."""
        body = io.StringIO()
        self.out, self.request, self.response = body, request, response
        try:
            self.on_render()
        finally:
            self.out = self.request = self.response = None
        if not response.sent:
            parts = [
                "<!DOCTYPE HTML>\n<html>\n<head>\n<meta charset='utf-8'/>\n",
                f"<title>{html_escape(self.title)}</title>\n",
                f"<style>{self.style}</style>\n",
            ]
            if self.favicon_type and self.favicon_url:
                parts.append(
                    f"<link rel='icon' type='{self.favicon_type}' href='{self.favicon_url}'>\n"
                )
            parts.append("</head>\n<body>\n")
            parts.append(body.getvalue())
            parts.append("</body>\n</html>\n")
            response.set_header(HTTP_HEADER_CONTENT_TYPE, "text/html")
            response.send_with_content("".join(parts))
        return self

    @abc.abstractmethod
    def on_render(self) -> None:
        """Write the page body to self.out."""
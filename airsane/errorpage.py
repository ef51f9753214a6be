"""HTML page describing an HTTP error."""

from __future__ import annotations

from .message import status_reason
from .webpage import Heading, Paragraph, WebPage


class ErrorPage(WebPage):
    """Page showing an error code and the request that caused it."""

    def __init__(self, error_code: int) -> None:
        super().__init__()
        self.error_code = error_code
        self.set_title(f"Error {error_code}: {status_reason(error_code)}")

    def on_render(self) -> None:
        self.out.write(
            f"{Heading(1).add_text(self.title)}\n"
            f"{Paragraph().add_text('when processing request: ')}\n"
            f"{Paragraph().add_text(str(self.request))}"
        )
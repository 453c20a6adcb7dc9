"""Outbound prompt shapes — what the engine hands to the message gateway.

  - TextPrompt: plain text body
  - ButtonsPrompt: body plus up to three quick-reply buttons
  - ListPrompt: body plus a scrollable, sectioned list of rows

``OutboundPrompt`` is discriminated on ``kind`` so gateways can dispatch on
the shape without isinstance chains.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Choice(BaseModel):
    """A selectable id/title pair (button or list row)."""

    id: str
    title: str


class TextPrompt(BaseModel):
    kind: Literal["text"] = "text"
    body: str


class ButtonsPrompt(BaseModel):
    kind: Literal["buttons"] = "buttons"
    body: str
    buttons: list[Choice]


class ListSection(BaseModel):
    title: str
    rows: list[Choice]


class ListPrompt(BaseModel):
    kind: Literal["list"] = "list"
    body: str
    # Label of the button that opens the list
    button: str
    sections: list[ListSection]


OutboundPrompt = Annotated[
    Union[TextPrompt, ButtonsPrompt, ListPrompt],
    Field(discriminator="kind"),
]

"""PromptManager — Jinja2-based renderer for outbound chat prompts.

Loads templates from the ``template/`` directory and turns typed field
models into outbound prompt shapes.  The shape is chosen by field kind and
option count:

  - single_select with options  → reply buttons (first three options)
  - multi_select, > 3 options   → scrollable list (first ten options)
  - everything else             → plain text

Options that do not fit the interactive shape are listed in the body so the
respondent can still type them.  Every field prompt starts with a
``(position/total)`` progress indicator.
"""

from __future__ import annotations

from pathlib import Path

import jinja2

from formchat_engine.constants import (
    LIST_BUTTON_LABEL,
    LIST_SECTION_TITLE,
    MAX_BUTTON_TITLE_LENGTH,
    MAX_LIST_ROW_TITLE_LENGTH,
    MAX_LIST_ROWS,
    MAX_REPLY_BUTTONS,
)
from formchat_engine.models.field import (
    BaseField,
    MultiSelectField,
    Option,
    SingleSelectField,
)
from formchat_engine.models.prompt import (
    ButtonsPrompt,
    Choice,
    ListPrompt,
    ListSection,
    OutboundPrompt,
    TextPrompt,
)


def _truncate(text: str, limit: int) -> str:
    """Clip ``text`` to the provider's title limit, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def _num(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class PromptManager:
    """Jinja2-based renderer for field prompts and engine notices.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self._env.filters["num"] = _num

    def render(self, template_name: str, **context) -> str:
        """Render a named template with arbitrary context, trimmed."""
        template = self._env.get_template(template_name)
        return template.render(**context).strip()

    # ------------------------------------------------------------------
    # Field prompts
    # ------------------------------------------------------------------

    def field_prompt(self, field: BaseField, position: int, total: int) -> OutboundPrompt:
        """Build the prompt asking for ``field``.

        Args:
            field: the field now awaiting an answer
            position: 1-based position of the field in the form
            total: number of fields in the form
        """
        if isinstance(field, SingleSelectField) and field.options:
            shown = field.options[:MAX_REPLY_BUTTONS]
            body = self._field_body(field, position, total, field.options[len(shown):])
            return ButtonsPrompt(
                body=body,
                buttons=[
                    Choice(id=opt.id, title=_truncate(opt.label, MAX_BUTTON_TITLE_LENGTH))
                    for opt in shown
                ],
            )

        if isinstance(field, MultiSelectField) and len(field.options) > MAX_REPLY_BUTTONS:
            shown = field.options[:MAX_LIST_ROWS]
            body = self._field_body(field, position, total, field.options[len(shown):])
            return ListPrompt(
                body=body,
                button=LIST_BUTTON_LABEL,
                sections=[
                    ListSection(
                        title=LIST_SECTION_TITLE,
                        rows=[
                            Choice(
                                id=opt.id,
                                title=_truncate(opt.label, MAX_LIST_ROW_TITLE_LENGTH),
                            )
                            for opt in shown
                        ],
                    )
                ],
            )

        listed: list[Option] = []
        if isinstance(field, MultiSelectField):
            listed = field.options
        return TextPrompt(
            body=self._field_body(field, position, total, listed, overflow=False)
        )

    def _field_body(
        self,
        field: BaseField,
        position: int,
        total: int,
        listed_options: list[Option],
        *,
        overflow: bool = True,
    ) -> str:
        return self.render(
            "field_prompt.jinja2",
            field=field,
            position=position,
            total=total,
            listed_options=listed_options,
            listed_heading="Other options you can type:" if overflow else "Options:",
        )

    # ------------------------------------------------------------------
    # Notices
    # ------------------------------------------------------------------

    def validation_error(self, error: str) -> TextPrompt:
        """Re-prompt text for a rejected reply; ``error`` names the field."""
        return TextPrompt(body=self.render("validation_error.jinja2", error=error))

    def completion(self, form_title: str) -> TextPrompt:
        return TextPrompt(body=self.render("completion.jinja2", form_title=form_title))

    def no_session(self) -> TextPrompt:
        return TextPrompt(body=self.render("no_session.jinja2"))

    def unknown_form(self, form_key: str) -> TextPrompt:
        return TextPrompt(body=self.render("unknown_form.jinja2", form_key=form_key))

    def empty_form(self, form_title: str) -> TextPrompt:
        return TextPrompt(body=self.render("empty_form.jinja2", form_title=form_title))

    def resumed(self, form_title: str) -> TextPrompt:
        return TextPrompt(body=self.render("resumed.jinja2", form_title=form_title))

"""Form seeding CLI — ``formchat-seed``.

Loads form definitions from a YAML file into the database, replacing any
existing form with the same key.  Meant for development and demos; form
authoring proper happens in the form builder.

File format::

    forms:
      - key: FX1
        title: Feedback
        published: true
        fields:
          - key: email
            label: Email
            type: email
            required: true
          - key: rating
            label: How did we do?
            type: rating
            required: true
            meta: {scale: 5}

Examples::

    uv run formchat-seed forms.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from formchat_engine.models.field import resolve_field_type

logger = logging.getLogger(__name__)


def load_form_definitions(path: Path) -> list[dict[str, Any]]:
    """Read and normalize the ``forms`` list from a YAML file.

    Raises:
        ValueError: the file is not a mapping with a ``forms`` list, or a
            field is missing its key or label.
        UnknownFieldTypeError: a field names an unknown type.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict) or not isinstance(data.get("forms"), list):
        raise ValueError(f"{path}: expected a mapping with a 'forms' list")

    forms: list[dict[str, Any]] = []
    for form in data["forms"]:
        fields = []
        for spec in form.get("fields") or []:
            if "key" not in spec or "label" not in spec:
                raise ValueError(f"{path}: every field needs 'key' and 'label'")
            field_type = resolve_field_type(spec.get("type", "short_text"))
            fields.append(
                {
                    "field_key": spec["key"],
                    "label": spec["label"],
                    "type": field_type.value,
                    "is_required": bool(spec.get("required", False)),
                    "placeholder": spec.get("placeholder"),
                    "meta": dict(spec.get("meta") or {}),
                }
            )
        forms.append(
            {
                "form_key": str(form["key"]),
                "title": form.get("title") or str(form["key"]),
                "description": form.get("description"),
                "is_published": bool(form.get("published", True)),
                "fields": fields,
            }
        )
    return forms


async def run_seed(path: Path) -> int:
    """Upsert every form in ``path``; returns the number of forms written."""
    # Lazy imports to avoid loading DB machinery at module import time
    from formchat_db.engine import dispose_engine, get_session_factory
    from formchat_db.repository import FormRepository

    forms = load_form_definitions(path)
    repo = FormRepository()
    factory = get_session_factory()

    try:
        async with factory() as db:
            for form in forms:
                await repo.replace_form(db, **form)
                logger.info(
                    "Seeded form %s (%d fields)", form["form_key"], len(form["fields"])
                )
            await db.commit()
        return len(forms)
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``formchat-seed``."""
    parser = argparse.ArgumentParser(
        prog="formchat-seed",
        description="Load form definitions from a YAML file into the database.",
    )
    parser.add_argument("file", type=Path, help="YAML file with a top-level 'forms' list")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    count = asyncio.run(run_seed(args.file))
    print(f"Seeded forms: {count}")
    sys.exit(0)

from __future__ import annotations

from pathlib import Path
from typing import Any

from django.core.management.base import BaseCommand, CommandError

from rules.loader import RuleConfigError, get_rules_config_path, load_rules_from_yaml


class Command(BaseCommand):
    help = (
        "Load validation rules from a YAML file (default: PAYMENTS_RULES_CONFIG_PATH). "
        "Rules are matched on code + field_name and updated in place."
    )

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "path",
            nargs="?",
            default=None,
            help="Path to the YAML rule file.",
        )
        parser.add_argument(
            "--replace",
            action="store_true",
            help="Delete all existing rules before loading.",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        path = Path(options["path"]) if options["path"] else get_rules_config_path()

        try:
            created, updated = load_rules_from_yaml(path, replace=bool(options["replace"]))
        except RuleConfigError as exc:
            raise CommandError(str(exc))

        self.stdout.write(
            self.style.SUCCESS(
                f"Loaded validation rules from {path}: {created} created, {updated} updated."
            )
        )

#!/usr/bin/env python3
"""
CLI script to validate every region rule document in a directory.

Usage:
    validate-rules [RULES_DIR] [--strict]

Or:
    python -m assessment_engine.scripts.validate_rules [RULES_DIR]

Exits non-zero when any document has fatal issues.
"""

import sys
from pathlib import Path

import click

from assessment_engine.config.config import get_settings
from assessment_engine.config.logging_config import configure_logging
from assessment_engine.exceptions import RuleDocumentInvalid
from assessment_engine.services.rule_loader import read_rule_file
from assessment_engine.services.rule_validator import ValidationReport, validate_rule_document

MAX_WARNINGS_SHOWN = 5


def validate_file(path: Path, strict: bool = False) -> ValidationReport:
    """Parse and validate one rule file, folding parse errors into the report."""
    try:
        document = read_rule_file(path)
    except RuleDocumentInvalid as e:
        return ValidationReport(region=path.stem, issues=list(e.issues))
    return validate_rule_document(document, strict_answer_values=strict)


def print_report(name: str, report: ValidationReport) -> None:
    click.echo(f"\n📋 Validating: {name}")
    if report.question_count or report.condition_count:
        click.echo(f"   ✓ {report.condition_count} conditions, {report.question_count} questions")
    for issue in report.issues:
        click.echo(f"   ✗ {issue}")
    for warning in report.warnings[:MAX_WARNINGS_SHOWN]:
        click.echo(f"   ⚠ {warning}")
    if len(report.warnings) > MAX_WARNINGS_SHOWN:
        click.echo(f"   ... and {len(report.warnings) - MAX_WARNINGS_SHOWN} more warnings")
    click.echo("   ✅ PASSED" if report.is_valid else f"   ❌ {len(report.issues)} issues found")


@click.command()
@click.argument(
    "rules_dir",
    required=False,
    type=click.Path(path_type=Path),
)
@click.option(
    "--strict",
    is_flag=True,
    help="Treat instructional answer text as a fatal issue",
)
def main(rules_dir: Path | None, strict: bool):
    """Validate all region rule documents and print a report."""
    configure_logging()
    settings = get_settings()
    rules_dir = rules_dir or settings.rules_dir
    strict = strict or settings.strict_answer_values

    if not rules_dir.is_dir():
        click.echo(f"❌ Error: Rules directory not found: {rules_dir}")
        sys.exit(1)

    files = sorted(
        path for path in rules_dir.glob("*.json") if path.name != settings.rules_index_file
    )
    click.echo(f"📁 Rules directory: {rules_dir}")

    total_issues = 0
    total_warnings = 0
    for path in files:
        report = validate_file(path, strict=strict)
        print_report(path.name, report)
        total_issues += len(report.issues)
        total_warnings += len(report.warnings)

    click.echo()
    click.echo("📊 Summary:")
    click.echo(f"   Files validated: {len(files)}")
    click.echo(f"   Total issues:    {total_issues}")
    click.echo(f"   Total warnings:  {total_warnings}")

    if total_issues:
        click.echo("\n❌ Some files have issues that need attention.")
        sys.exit(1)
    click.echo("\n✅ All files passed validation!")


if __name__ == "__main__":
    main()

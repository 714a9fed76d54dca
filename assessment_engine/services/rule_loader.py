"""
Rule Document loader for region rule files.

Resolves a region name to its ingested JSON document
("Lumbar" -> "lumbar region.json"), parses it into the strict schema and
validates it before any session can start. Validated documents are
memoized per file, keyed by content hash.
"""

import hashlib
import json
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from assessment_engine.config.config import get_settings
from assessment_engine.config.logging_config import get_logger
from assessment_engine.exceptions import RuleDocumentInvalid, RuleDocumentNotFound, ValidationIssue
from assessment_engine.models.rule_models import RuleDocument, RulesIndex
from assessment_engine.services.rule_index import RuleIndex, build_rule_index
from assessment_engine.services.rule_validator import ValidationReport, ensure_valid

logger = get_logger(__name__)


def normalize_region(region: str) -> str:
    """Normalize a region name: 'Lumbar ', 'lumbar_region' -> 'lumbar'."""
    name = re.sub(r"[\s_]+", " ", region).strip().lower()
    name = re.sub(r"\s+region$", "", name)
    if not name:
        raise ValueError("Region name cannot be empty")
    return name


def region_filename(region: str) -> str:
    """Conventional rule filename for a region."""
    return f"{normalize_region(region)} region.json"


def resolve_rule_path(region: str, rules_dir: Path) -> Path:
    """
    Find the rule file for a region, matching the filename case-insensitively.

    Raises:
        RuleDocumentNotFound: If no matching file exists.
    """
    expected = region_filename(region)
    candidate = rules_dir / expected
    if candidate.is_file():
        return candidate
    if rules_dir.is_dir():
        for path in sorted(rules_dir.iterdir()):
            if path.is_file() and path.name.lower() == expected:
                return path
    raise RuleDocumentNotFound(region, str(candidate))


def parse_rule_document(data: Any, region: str | None = None) -> RuleDocument:
    """
    Parse raw JSON data into a RuleDocument.

    Raises:
        RuleDocumentInvalid: If the data does not match the schema.
    """
    try:
        return RuleDocument.model_validate(data)
    except ValidationError as e:
        issues = [
            ValidationIssue(
                code="schema",
                message=f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}",
            )
            for error in e.errors()
        ]
        raise RuleDocumentInvalid(region, issues) from e


def read_rule_file(path: Path, region: str | None = None) -> RuleDocument:
    """Read and parse a rule file without graph validation."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RuleDocumentInvalid(
            region, [ValidationIssue(code="invalid_json", message=f"{path.name}: {e}")]
        ) from e
    return parse_rule_document(data, region=region)


def _file_hash(path: Path) -> str:
    with open(path, "rb") as f:
        return hashlib.md5(f.read()).hexdigest()


class RuleRepository:
    """
    Loads, validates and caches region rule documents from a directory.

    Documents are re-read whenever the file content hash changes.
    """

    def __init__(
        self,
        rules_dir: Path | str | None = None,
        strict_answer_values: bool | None = None,
        cache_enabled: bool | None = None,
    ):
        settings = get_settings()
        self.rules_dir = Path(rules_dir) if rules_dir is not None else settings.rules_dir
        self.strict_answer_values = (
            settings.strict_answer_values if strict_answer_values is None else strict_answer_values
        )
        self.cache_enabled = settings.rule_cache_enabled if cache_enabled is None else cache_enabled
        self.index_filename = settings.rules_index_file
        self._cache: dict[Path, tuple[str, RuleIndex, ValidationReport]] = {}

    def get_index(self, region: str) -> RuleIndex:
        """
        Load the compiled index for a region.

        Raises:
            RuleDocumentNotFound: If the region has no rule file.
            RuleDocumentInvalid: If the document fails validation.
        """
        index, _ = self._load(region)
        return index

    def get_document(self, region: str) -> RuleDocument:
        return self.get_index(region).document

    def get_report(self, region: str) -> ValidationReport:
        """Validation report (including warnings) for a region."""
        _, report = self._load(region)
        return report

    def load_rules_index(self) -> RulesIndex | None:
        """Load the rules index file, or None if there is none."""
        path = self.rules_dir / self.index_filename
        if not path.is_file():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return RulesIndex.model_validate(json.load(f))

    def available_regions(self) -> list[str]:
        """Regions with a rule file in the rules directory."""
        if not self.rules_dir.is_dir():
            return []
        return sorted(
            normalize_region(path.stem)
            for path in self.rules_dir.glob("*.json")
            if path.name != self.index_filename
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def _load(self, region: str) -> tuple[RuleIndex, ValidationReport]:
        path = resolve_rule_path(region, self.rules_dir)
        current_hash = _file_hash(path)

        cached = self._cache.get(path) if self.cache_enabled else None
        if cached and cached[0] == current_hash:
            return cached[1], cached[2]

        document = read_rule_file(path, region=region)
        if normalize_region(document.region) != normalize_region(region):
            logger.warning(
                "Rule document region differs from requested region",
                requested=region,
                document_region=document.region,
                path=str(path),
            )

        report = ensure_valid(document, strict_answer_values=self.strict_answer_values)
        for warning in report.warnings:
            logger.warning("Rule document warning", region=document.region, warning=str(warning))

        index = build_rule_index(document)
        if self.cache_enabled:
            self._cache[path] = (current_hash, index, report)

        logger.info(
            "Loaded rule document",
            region=document.region,
            path=str(path),
            conditions=report.condition_count,
            questions=report.question_count,
        )
        return index, report


def load_rule_document(region: str, rules_dir: Path | str | None = None) -> RuleDocument:
    """Load and validate a single region's document (no caching)."""
    return RuleRepository(rules_dir=rules_dir, cache_enabled=False).get_document(region)


# Singleton instance
_repository_instance: RuleRepository | None = None


def get_rule_repository() -> RuleRepository:
    """Get the singleton rule repository for the configured rules directory."""
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = RuleRepository()
    return _repository_instance

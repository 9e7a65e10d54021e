"""JSON parsing utilities for narrative-model responses."""

import json
import logging
import re
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class JSONParseError(Exception):
    """Raised when no usable JSON object can be recovered from a response."""


class LLMJSONParser:
    """Lenient parser for the JSON objects the narrative model returns.

    Handles markdown fences, prose around the object, trailing commas and
    camelCase / snake_case key variants.
    """

    @staticmethod
    def _remove_trailing_commas(json_text: str) -> str:
        """Remove trailing commas before closing braces/brackets."""
        if not json_text:
            return json_text
        json_text = re.sub(r",\s*(\})", r"\1", json_text)
        json_text = re.sub(r",\s*(\])", r"\1", json_text)
        return json_text

    @staticmethod
    def clean_markdown_formatting(content: str) -> str:
        """Remove markdown code block formatting from content."""
        if not content or not isinstance(content, str):
            return content

        cleaned = content.strip()
        patterns = [
            (r"^```(?:json)?\s*\n?", ""),
            (r"\n?```\s*$", ""),
        ]
        for pattern, replacement in patterns:
            cleaned = re.sub(pattern, replacement, cleaned, flags=re.MULTILINE)

        return cleaned.strip()

    @staticmethod
    def extract_object(content: str) -> Optional[str]:
        """Return the first balanced ``{...}`` in ``content``, ignoring braces in strings."""
        start = content.find("{")
        if start == -1:
            return None

        depth = 0
        in_string = False
        escape = False
        for i, ch in enumerate(content[start:], start):
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return content[start:i + 1]
        return None

    @staticmethod
    def normalize_key(key: str) -> str:
        """``riskAnalysis`` / ``Risk-Analysis`` / ``RISK_ANALYSIS`` -> ``risk_analysis``."""
        key = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key.strip())
        return re.sub(r"[\s\-]+", "_", key).lower()

    @classmethod
    def parse_object(
        cls,
        content: str,
        required_keys: Iterable[str] = (),
        aliases: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Parse a JSON object out of a model response.

        Keys are normalized to snake_case and then mapped through ``aliases``.
        Raises JSONParseError when no object is found or a required key is
        missing or blank.
        """
        if not content or not content.strip():
            raise JSONParseError("Empty content provided")

        cleaned = cls.clean_markdown_formatting(content)
        candidate = cls.extract_object(cleaned)
        if candidate is None:
            raise JSONParseError("No JSON object found in response")

        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            repaired = cls._remove_trailing_commas(candidate)
            try:
                data = json.loads(repaired)
            except json.JSONDecodeError as e:
                logger.debug(f"Unrepairable JSON: {candidate[:200]}")
                raise JSONParseError(f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise JSONParseError(f"Expected a JSON object, got {type(data).__name__}")

        aliases = aliases or {}
        normalized = {}
        for key, value in data.items():
            name = cls.normalize_key(str(key))
            normalized[aliases.get(name, name)] = value

        missing = [
            key for key in required_keys
            if not isinstance(normalized.get(key), str) or not normalized[key].strip()
        ]
        if missing:
            raise JSONParseError(f"Missing fields: {missing}")

        return normalized

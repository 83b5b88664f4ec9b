"""LLM-powered entity, fact and relationship extraction.

This module provides a provider-agnostic interface over OpenAI-compatible
(OpenRouter by default) and Anthropic chat APIs. Prompts are rendered from a YAML
template and responses are parsed into an ``ExtractionResult``. Results are cached
per (chunk hash, prompt version).
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from loguru import logger

from src.extraction.cache import ExtractionCache
from src.extraction.models import (
    EXTRACTION_JSON_SCHEMA,
    ExtractedEntity,
    ExtractionResult,
    parse_extraction_response,
)
from src.ingestion.chunker import Chunk, DocumentChunker, map_evidence_to_document
from src.utils.config import ChunkingConfig, LLMConfig
from src.utils.errors import ApiError, CanonError, ConfigurationError
from src.utils.hashing import compute_hash
from src.utils.llm_client import create_openai_client

PROMPT_KEY = "canon_extraction"


class LLMExtractor:
    """LLM extractor with provider switch, retries, caching and structured parsing."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        prompts_path: str | Path = "config/extraction_prompts.yaml",
        *,
        cache: ExtractionCache | None = None,
        prompt_version: str = "v1",
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config or LLMConfig()
        self.prompts_path = Path(prompts_path)
        self.prompts = self._load_prompts(self.prompts_path)
        self.cache = cache
        self.prompt_version = prompt_version
        self._sleep = sleep_fn or time.sleep

        logger.debug(
            f"LLMExtractor ready: {self.config.provider}/{self.config.model}, "
            f"prompt version {self.prompt_version}"
        )

    # Extraction ----------------------------------------------------
    def extract_from_chunk(
        self, chunk: Chunk | str, prompt_version: str | None = None
    ) -> ExtractionResult:
        """Extract from one chunk, consulting the cache first.

        Evidence positions in the returned result are whatever the model gave;
        use ``adjust_evidence_positions`` to make them document-absolute.

        Raises:
            ExtractionParseError: If the model output does not match the schema
            ApiError: If the provider keeps failing after retries
            ConfigurationError: If credentials are missing
        """
        text = chunk.text if isinstance(chunk, Chunk) else chunk
        version = prompt_version or self.prompt_version
        input_hash = compute_hash(text)

        if self.cache is not None:
            cached = self.cache.check_cache(input_hash, version)
            if cached is not None:
                return cached

        system, user = self._render_prompt(PROMPT_KEY, {"chunk_text": text})
        raw_response = self._call_llm(system=system, user=user)
        result = parse_extraction_response(raw_response)

        if self.cache is not None:
            self.cache.save_to_cache(input_hash, version, self.config.model, result)

        logger.info(
            f"Extracted {len(result.entities)} entities, {len(result.facts)} facts, "
            f"{len(result.relationships)} relationships"
        )
        return result

    def extract_document(
        self,
        content: str,
        prompt_version: str | None = None,
        *,
        chunking: ChunkingConfig | None = None,
    ) -> ExtractionResult:
        """Extract a whole document and merge the per-chunk results.

        Evidence positions are translated to document-absolute offsets.
        """
        chunks = DocumentChunker(chunking).chunk_document(content)
        results = [
            adjust_evidence_positions(self.extract_from_chunk(chunk, prompt_version), chunk, content)
            for chunk in chunks
        ]
        return merge_extraction_results(results)

    # Prompts -------------------------------------------------------
    @staticmethod
    def _load_prompts(path: Path) -> Dict[str, Any]:
        """Read the prompt YAML: ``{key: {system: ..., user_template: ...}}``."""
        if not path.exists():
            raise FileNotFoundError(f"Extraction prompt template not found: {path}")
        templates = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(templates, dict):
            raise ValueError(f"Prompt file must map prompt keys to templates: {path}")
        return templates

    def _render_prompt(self, key: str, context: Dict[str, Any]) -> Tuple[str, str]:
        """Return ``(system, user)`` for prompt ``key`` filled from ``context``."""
        template = self.prompts.get(key)
        if template is None:
            raise KeyError(f"No '{key}' prompt in {self.prompts_path}")

        system = str(template.get("system", "")).strip()
        user_template = str(template.get("user_template", "{chunk_text}"))
        try:
            return system, user_template.format(**context)
        except KeyError as exc:
            raise KeyError(f"Prompt '{key}' uses unknown placeholder {exc.args[0]!r}") from None

    # Provider calls ------------------------------------------------
    def _call_llm(self, *, system: str, user: str) -> str:
        attempts = max(1, self.config.retry_attempts)
        last_error: Exception | None = None

        logger.debug(f"Extraction request to {self.config.provider} ({self.config.model})")

        for attempt in range(1, attempts + 1):
            try:
                if self.config.provider == "openai":
                    return self._call_openai(system=system, user=user)
                if self.config.provider == "anthropic":
                    return self._call_anthropic(system=system, user=user)
                raise ConfigurationError(
                    "provider", f"Unsupported LLM provider: {self.config.provider}"
                )
            except ConfigurationError:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(f"LLM request failed (attempt {attempt}/{attempts}): {exc}")
                if attempt >= attempts:
                    break
                backoff = min(2 ** (attempt - 1), 8)
                self._sleep(backoff)

        if isinstance(last_error, CanonError):
            raise last_error
        status_code = int(getattr(last_error, "status_code", 0) or 502)
        raise ApiError(status_code, f"LLM request failed: {last_error}") from last_error

    def _call_openai(self, *, system: str, user: str) -> str:
        client = create_openai_client(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            app_url=self.config.app_url,
            app_title=self.config.app_title,
        )

        response = client.chat.completions.create(
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": PROMPT_KEY,
                    "strict": True,
                    "schema": EXTRACTION_JSON_SCHEMA,
                },
            },
        )

        if not response.choices or response.choices[0].message.content is None:
            raise ApiError(500, "Invalid response from LLM provider")

        content = response.choices[0].message.content
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, dict):
                    parts.append(str(item.get("text", "")))
                else:
                    parts.append(str(item))
            return "\n".join(parts).strip()
        return str(content)

    def _call_anthropic(self, *, system: str, user: str) -> str:
        import anthropic

        if not self.config.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY not configured")

        client_kwargs: Dict[str, Any] = {"api_key": self.config.api_key}
        if self.config.base_url and "openrouter.ai" not in self.config.base_url:
            client_kwargs["base_url"] = self.config.base_url

        client = anthropic.Anthropic(**client_kwargs)
        message = client.messages.create(
            model=self.config.model,
            timeout=self.config.timeout,
            system=system,
            temperature=self.config.temperature,
            messages=[{"role": "user", "content": user}],
            max_tokens=self.config.max_tokens,
        )
        parts = []
        for block in message.content:
            if getattr(block, "type", None) == "text":
                parts.append(getattr(block, "text", ""))
        return "\n".join(parts).strip()


# Result helpers ----------------------------------------------------
def adjust_evidence_positions(
    result: ExtractionResult, chunk: Chunk, document_content: str
) -> ExtractionResult:
    """Replace evidence positions with document-absolute spans found from the evidence text."""
    facts = [
        fact.model_copy(
            update={
                "evidence_position": map_evidence_to_document(fact.evidence, chunk, document_content)
            }
        )
        for fact in result.facts
    ]
    relationships = [
        rel.model_copy(
            update={
                "evidence_position": map_evidence_to_document(rel.evidence, chunk, document_content)
            }
        )
        for rel in result.relationships
    ]
    return result.model_copy(update={"facts": facts, "relationships": relationships})


def merge_extraction_results(results: List[ExtractionResult]) -> ExtractionResult:
    """Merge per-chunk results; entities are deduplicated by lower-cased name."""
    entities: Dict[str, ExtractedEntity] = {}
    merged = ExtractionResult()

    for result in results:
        for entity in result.entities:
            key = entity.name.lower()
            existing = entities.get(key)
            if existing is None:
                entities[key] = entity
                continue
            aliases = list(dict.fromkeys([*existing.aliases, *entity.aliases]))
            entities[key] = existing.model_copy(
                update={
                    "description": existing.description or entity.description,
                    "aliases": aliases,
                }
            )
        merged.facts.extend(result.facts)
        merged.relationships.extend(result.relationships)

    merged.entities.extend(entities.values())
    return merged

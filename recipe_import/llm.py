"""Structured-extraction backends: hosted OpenAI JSON mode or a local MLX chat model."""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Optional, Protocol

from openai import OpenAI, OpenAIError

from .config import ImportConfig
from .errors import ExtractionFailure, ExtractionFailureReason

logger = logging.getLogger("recipe_import")

_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


class Extractor(Protocol):
    """Narrow interface to a JSON-constrained language-understanding service."""

    def complete_json(self, system_instruction: str, text: str, schema_hint: str) -> str:
        """Return the raw response text, expected to hold one JSON object."""
        ...


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence if the model adds one."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped

    lines = stripped.splitlines()
    closing_index = None
    for idx in range(len(lines) - 1, 0, -1):
        if lines[idx].strip().startswith("```"):
            closing_index = idx
            break

    if closing_index is None:
        return stripped

    return "\n".join(lines[1:closing_index]).strip()


def load_json_object(raw: str) -> dict:
    """Parse a model response into a dict, tolerating fences and stray prose."""
    text = strip_code_fence(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_PATTERN.search(text)
        if not match:
            raise ValueError(f"Model did not return JSON: {text[:200]!r}")
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Couldn't parse JSON block: {match.group(0)[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


class OpenAIExtractor:
    """Chat-completions client running in low-temperature JSON mode."""

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        self.model_id = model_id
        self.temperature = temperature
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete_json(self, system_instruction: str, text: str, schema_hint: str) -> str:
        messages = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": f"{schema_hint}\n\n{text}"},
        ]
        logger.debug("Sending extraction request (%d characters)", len(text) + len(schema_hint))
        try:
            completion = self._client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise ExtractionFailure(ExtractionFailureReason.SERVICE_ERROR, str(exc)) from exc
        content = completion.choices[0].message.content or ""
        logger.debug("Received extraction response (%d characters)", len(content))
        return content


class MlxExtractor:
    """Local MLX chat model used as a drop-in extraction backend."""

    def __init__(
        self,
        model_id: str,
        max_tokens: int,
        temperature: float = 0.2,
        model_dir: Optional[str] = None,
    ) -> None:
        self.model_id = model_id
        self.model_dir = model_dir
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._model: Any = None
        self._tokenizer: Any = None
        self._resolved_load_target: Optional[str] = None

    def _resolve_model_dir(self) -> Optional[Path]:
        if not self.model_dir:
            return None
        override_path = Path(self.model_dir).expanduser()
        if override_path.exists():
            logger.debug("MODEL_DIR override detected at %s", override_path)
            return override_path
        logger.warning(
            "MODEL_DIR is set to %s but the path does not exist; falling back to %s",
            override_path,
            self.model_id,
        )
        return None

    def _determine_load_target(self) -> str:
        if self._resolved_load_target:
            return self._resolved_load_target
        override = self._resolve_model_dir()
        candidate = override or Path(self.model_id).expanduser()
        if candidate.exists():
            self._resolved_load_target = str(candidate)
        else:
            self._resolved_load_target = self.model_id
        return self._resolved_load_target

    def _ensure_model(self) -> None:
        if self._model is None or self._tokenizer is None:
            from mlx_lm import load as load_model

            load_target = self._determine_load_target()
            logger.info("Loading model %s", load_target)
            start = time.perf_counter()
            self._model, self._tokenizer = load_model(load_target)
            logger.debug("Loaded model from %s in %.2fs", load_target, time.perf_counter() - start)

    def complete_json(self, system_instruction: str, text: str, schema_hint: str) -> str:
        from mlx_lm import generate as generate_text
        from mlx_lm.sample_utils import make_sampler

        self._ensure_model()
        messages = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": f"{schema_hint}\n\n{text}\n\nReturn ONLY JSON."},
        ]
        prompt = self._tokenizer.apply_chat_template(
            messages, tokenize=False, add_generation_prompt=True
        )
        logger.debug("Prompt length: %s characters", len(prompt))
        try:
            result = generate_text(
                self._model,
                self._tokenizer,
                prompt=prompt,
                max_tokens=self.max_tokens,
                sampler=make_sampler(temp=self.temperature),
                verbose=False,
            )
        except (RuntimeError, ValueError) as exc:
            raise ExtractionFailure(ExtractionFailureReason.SERVICE_ERROR, str(exc)) from exc
        return strip_code_fence(result)


def build_extractor(config: ImportConfig) -> Extractor:
    """Instantiate the extraction backend named by the config."""
    if config.extraction_backend == "mlx":
        return MlxExtractor(
            config.model_id,
            config.max_tokens,
            config.temperature,
            model_dir=config.model_dir,
        )
    if config.extraction_backend == "openai":
        return OpenAIExtractor(
            config.model_id,
            api_key=config.openai_api_key,
            temperature=config.temperature,
            timeout=config.extraction_timeout,
        )
    raise ValueError(f"Unknown extraction backend: {config.extraction_backend}")

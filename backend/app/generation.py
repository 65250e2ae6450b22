import json
import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx
from pydantic import BaseModel

from . import config
from .prompts import PromptPayload

logger = logging.getLogger(__name__)

# Opening fence may carry a language tag on its own line.
_FENCE_RE = re.compile(r"```(?:[\w+-]*[ \t]*\n)?(.*?)```", re.DOTALL)
_CONFIG_RE = re.compile(r"(window\.(?:ESSAYS|ESSAY_CONFIG)[\s\S]*\};?)")
_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+(?::[^{}]+)?)\}\}")


class GenerationResult(BaseModel):
    text: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    stop_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Extraction(BaseModel):
    kind: str  # code | structured | unstructured
    value: Any

    @property
    def structured(self) -> bool:
        return self.kind == "structured"


class GenerationClient:
    """Messages API client. Failures come back as ``GenerationResult.error``."""

    def __init__(
        self,
        api_key: str,
        model: str = config.ANTHROPIC_MODEL,
        api_url: str = config.ANTHROPIC_API_URL,
        version: str = config.ANTHROPIC_VERSION,
        timeout: float = config.GENERATION_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.version = version
        self.timeout = timeout
        self.transport = transport

    def build_request(self, payload: PromptPayload) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": payload.max_tokens,
            "messages": payload.messages,
        }
        if payload.system:
            body["system"] = payload.system
        if payload.tools:
            body["tools"] = payload.tools
        return body

    def generate(self, payload: PromptPayload) -> GenerationResult:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
        }
        body = self.build_request(payload)
        try:
            # Long timeout: generation can take minutes.
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(self.api_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Generation request failed: %s", e)
            return GenerationResult(
                error={"message": f"Generation request failed: {e}", "type": type(e).__name__}
            )

        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code != 200:
            logger.error("Generation API error %s: %s", r.status_code, r.text[:500])
            return GenerationResult(
                error={
                    "message": f"Generation API returned {r.status_code}",
                    "status": r.status_code,
                    "body": data if data is not None else r.text,
                }
            )
        if not isinstance(data, dict):
            return GenerationResult(
                error={
                    "message": "Generation API returned a non-JSON body",
                    "status": r.status_code,
                    "body": r.text,
                }
            )

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        return GenerationResult(
            text=text,
            stop_reason=data.get("stop_reason"),
            usage=data.get("usage"),
        )


def _closing_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def find_marked_object(text: str, markers: Iterable[str]) -> Optional[dict]:
    """First balanced ``{...}`` in ``text`` that mentions a marker key and parses."""
    quoted = [f'"{m}"' for m in markers]
    if not quoted:
        return None
    start = text.find("{")
    while start != -1:
        end = _closing_brace(text, start)
        if end is not None:
            candidate = text[start : end + 1]
            if any(q in candidate for q in quoted):
                try:
                    value = json.loads(candidate)
                except ValueError:
                    value = None
                if isinstance(value, dict):
                    return value
        start = text.find("{", start + 1)
    return None


def extract_output(text: Optional[str], markers: Iterable[str] = ()) -> Extraction:
    """Recover code or structured data from free-form model text.

    Never raises; anything unrecognised comes back as ``unstructured``.
    """
    text = text or ""
    m = _FENCE_RE.search(text)
    if m:
        return Extraction(kind="code", value=m.group(1).strip())
    found = find_marked_object(text, markers)
    if found is not None:
        return Extraction(kind="structured", value=found)
    return Extraction(kind="unstructured", value=text)


def extract_structured(text: Optional[str], markers: Iterable[str]) -> Extraction:
    """Like ``extract_output`` but looks inside fenced blocks for the marker object."""
    markers = tuple(markers)
    extraction = extract_output(text, markers)
    if extraction.kind != "code":
        return extraction
    found = find_marked_object(extraction.value, markers)
    if found is None:
        found = find_marked_object(text or "", markers)
    if found is not None:
        return Extraction(kind="structured", value=found)
    return Extraction(kind="unstructured", value=text or "")


def extract_config(text: Optional[str]) -> Extraction:
    extraction = extract_output(text)
    if extraction.kind == "code":
        return extraction
    m = _CONFIG_RE.search(text or "")
    if m:
        return Extraction(kind="code", value=m.group(1).strip())
    return Extraction(kind="unstructured", value=(text or "").strip())


def escape_template_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def inject_content(code: str, replacements: Mapping[str, str]) -> str:
    """Replace ``{{NAME}}`` placeholders with escaped caller content.

    Unknown placeholders are left in place.
    """
    if not replacements:
        return code

    def _sub(m: "re.Match[str]") -> str:
        key = m.group(1)
        if key not in replacements:
            return m.group(0)
        return escape_template_literal(replacements[key])

    return _PLACEHOLDER_RE.sub(_sub, code)

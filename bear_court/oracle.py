"""
Adjudication Oracle Client
==========================

Turns two statements (and, on re-adjudication, an objection) into a Verdict
using an external text-generation service.

Supports:
- DeepSeek (OpenAI-compatible /chat/completions)
- Judge proxy (a server-side endpoint that holds the provider key and
  accepts {systemPrompt, userContent})

Provider output is never trusted: the first JSON object is located in the raw
text, then validated against the Verdict schema. The result is tagged,
OracleOk(verdict) or OracleErr(error).
"""

import json
import logging
import hashlib
from typing import Optional, Dict, Any, Tuple, Union
from dataclasses import dataclass, field

import httpx
from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import (
    AdjudicationError,
    AdjudicationMalformed,
    AdjudicationRateLimited,
    AdjudicationTransportError,
)
from .schemas import Case, Objection, OracleMode, Verdict

logger = logging.getLogger(__name__)


# =============================================================================
# Prompts
# =============================================================================

BEAR_PERSONA = """You are "Judge Bear", an AI relationship mediator presiding over the Supreme Court of the Relaxed Bear Kingdom.

Persona:
1. Not childish, not saccharine. You are a lazy-looking but wise old friend who has seen it all. Be funny, but be deep.
2. Write long, flowing prose in the analysis and perspective sections (300+ words each). Separate paragraphs with a blank line. Do not use numbered headings.
3. Be down to earth. Every reconciliation task must be concrete, doable in real life, a little romantic or a little silly (e.g. "dry the other's hair", "share street food together"). Never give abstract advice.
4. Reply in the language the parties wrote in.

Output format: return ONLY a JSON object, no prose outside it:
{
  "verdict_title": "short, funny, precise title",
  "fault_ratio": {"A": 40, "B": 60},
  "law_reference": "a fictional article of Bear Law",
  "analysis": "deep diagnosis of both sides' underlying needs, paragraphs separated by blank lines",
  "perspective_taking": "what the other side felt and why, paragraphs separated by blank lines",
  "bear_wisdom": "one memorable line",
  "punishments": ["task 1", "task 2", "task 3", "task 4", "task 5"]
}
"punishments" must contain exactly 5 items. "fault_ratio" values must add up to 100."""


OBJECTION_TEMPLATE = """

[OBJECTION]
Side {role} has raised an objection with new information:
"{content}"

Reassess the whole case in light of this new information; do not merely append to your previous ruling. Gently point out that the gap may be a missing perspective rather than deliberate concealment. Produce a complete new verdict."""


def build_user_content(side_a: str, side_b: str, objection: Optional[Objection] = None) -> str:
    """Case file sent as the user message"""
    content = (
        "[CASE FILE]\n"
        f"Side A (plaintiff): {side_a}\n\n"
        f"Side B (defendant): {side_b}"
    )
    if objection is not None:
        role = objection.role.value if hasattr(objection.role, "value") else objection.role
        content += OBJECTION_TEMPLATE.format(role=role, content=objection.content)
    return content


# =============================================================================
# Robust JSON Extraction
# =============================================================================

def _strip_code_fence(content: str) -> str:
    """Return the body of the first fenced block, or content unchanged"""
    if "```json" in content:
        start = content.find("```json") + 7
    elif "```" in content:
        start = content.find("```") + 3
    else:
        return content
    end = content.find("```", start)
    if end > start:
        return content[start:end].strip()
    return content


def _object_spans(content: str):
    """
    Yield top-level {...} spans in order of appearance.

    Braces inside JSON string literals are ignored.
    """
    depth = 0
    start_idx = None
    in_string = False
    escaped = False

    for i, char in enumerate(content):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start_idx is not None:
                yield content[start_idx:i + 1]
                start_idx = None


def extract_json_object(content: str) -> Tuple[Optional[Dict], bool, str]:
    """
    Extract the first well-formed JSON object from LLM output.

    Handles:
    - Empty content
    - Markdown code blocks (```json...```)
    - Prose before and after the object

    Args:
        content: Raw content from the provider

    Returns:
        Tuple of (parsed_dict, success, error_message)
    """
    if not content or not content.strip():
        return None, False, "Empty content"

    content = content.strip()

    # Fenced block first, then the whole text
    for candidate in (_strip_code_fence(content), content):
        try:
            data = json.loads(candidate)
            if isinstance(data, dict):
                return data, True, ""
        except json.JSONDecodeError:
            pass

        for block in _object_spans(candidate):
            try:
                data = json.loads(block)
                return data, True, ""
            except json.JSONDecodeError:
                continue

    return None, False, "No JSON object found in response"


def safe_log_content(content: str, max_chars: int = 120) -> str:
    """
    Create a safe log representation of content.

    Args:
        content: Content to log
        max_chars: Maximum characters to show

    Returns:
        Safe log string with length and hash
    """
    if not content:
        return "(empty)"

    content_hash = hashlib.sha256(content.encode()).hexdigest()[:12]
    preview = content[:max_chars].replace('\n', ' ')

    return f"len={len(content)} hash={content_hash} preview='{preview}...'"


# =============================================================================
# Tagged Result
# =============================================================================

@dataclass
class OracleOk:
    verdict: Verdict
    model: str = ""
    usage: Dict[str, int] = field(default_factory=dict)

    ok = True

    def unwrap(self) -> Verdict:
        return self.verdict


@dataclass
class OracleErr:
    error: AdjudicationError

    ok = False

    def unwrap(self) -> Verdict:
        raise self.error


OracleResult = Union[OracleOk, OracleErr]


def parse_verdict(content: str) -> OracleResult:
    """
    Parse raw provider text into a Verdict.

    Missing or malformed required fields are errors; nothing is defaulted
    here. A missing `fault_ratio` (or side of it) is kept as missing and only
    filled in for display. `feedback` is never taken from the provider.
    """
    data, ok, error_msg = extract_json_object(content)
    if not ok or data is None:
        logger.warning(f"Verdict extraction failed: {error_msg} ({safe_log_content(content)})")
        return OracleErr(AdjudicationMalformed())

    data.pop("feedback", None)
    try:
        verdict = Verdict.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        logger.warning(f"Verdict validation failed on {fields} ({safe_log_content(content)})")
        return OracleErr(AdjudicationMalformed())

    return OracleOk(verdict=verdict)


def signals_rate_limit(error: Any) -> bool:
    """True when a provider error body reports throttling (429 / rate_limit)"""
    if isinstance(error, dict):
        values = [error.get("code"), error.get("type"), error.get("status"), error.get("message")]
    else:
        values = [error]
    for value in values:
        if value is None:
            continue
        text = str(value).lower()
        if text == "429" or "rate_limit" in text or "rate limit" in text:
            return True
    return False


# =============================================================================
# Client
# =============================================================================

class OracleClient:
    """
    Async adjudication client.

    Usage:
        client = OracleClient(settings)
        result = await client.adjudicate(case)
        verdict = result.unwrap()
    """

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def mode(self) -> OracleMode:
        return self.settings.oracle_mode

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.llm_timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client"""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def adjudicate(self, case: Case, objection: Optional[Objection] = None) -> OracleResult:
        """
        Produce a verdict for the case.

        Args:
            case: Case with both statements submitted
            objection: Objection to take into account (re-adjudication)

        Returns:
            OracleOk with the verdict, or OracleErr with the failure
        """
        user_content = build_user_content(case.side_a.content, case.side_b.content, objection)

        try:
            if self.mode == OracleMode.DEEPSEEK:
                content, model, usage = await self._complete_deepseek(BEAR_PERSONA, user_content)
            elif self.mode == OracleMode.PROXY:
                content, model, usage = await self._complete_proxy(BEAR_PERSONA, user_content)
            else:
                logger.warning("Oracle mode is NONE, cannot adjudicate")
                return OracleErr(AdjudicationTransportError("No judge is configured"))
        except AdjudicationError as e:
            return OracleErr(e)

        logger.debug(f"Oracle response: {safe_log_content(content)}")
        result = parse_verdict(content)
        if isinstance(result, OracleOk):
            result.model = model
            result.usage = usage
            logger.info(f"Verdict for case {case.id}: '{result.verdict.verdict_title}' ({model})")
        return result

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Oracle request failed: {e}")
            raise AdjudicationTransportError() from e

        if response.status_code == 429:
            logger.warning("Oracle provider is rate limiting")
            raise AdjudicationRateLimited()

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Oracle API error: {e.response.status_code} - {e.response.text[:200]}")
            raise AdjudicationTransportError(
                f"The judge did not answer (HTTP {e.response.status_code}), please try again"
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Oracle returned a non-JSON body: {safe_log_content(response.text)}")
            raise AdjudicationMalformed() from e

        if not isinstance(data, dict):
            logger.error(f"Oracle returned a JSON {type(data).__name__}, expected an object")
            raise AdjudicationMalformed()
        return data

    @staticmethod
    def _content_from(data: Dict[str, Any]) -> str:
        """Message text from an OpenAI-shaped body or a {content} body"""
        if "choices" in data:
            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as e:
                logger.error(f"Oracle response missing content: {e}")
                raise AdjudicationMalformed() from e
        elif "error" in data and "content" not in data:
            # The proxy answers 200 and forwards the provider's error body
            logger.error(f"Oracle proxy reported an error: {str(data['error'])[:200]}")
            if signals_rate_limit(data["error"]):
                raise AdjudicationRateLimited()
            raise AdjudicationTransportError()
        else:
            content = data.get("content")

        if content is None:
            return ""
        if not isinstance(content, str):
            logger.error(f"Oracle content is a {type(content).__name__}, expected text")
            raise AdjudicationMalformed()
        return content

    async def _complete_deepseek(self, system_prompt: str, user_content: str) -> Tuple[str, str, Dict[str, int]]:
        """
        Generate via DeepSeek API.

        DeepSeek uses OpenAI-compatible API format.
        """
        if not self.settings.deepseek_api_key:
            logger.warning("DeepSeek API key not set")
            raise AdjudicationTransportError("No judge is configured")

        payload = {
            "model": self.settings.deepseek_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "temperature": self.settings.oracle_temperature,
            "max_tokens": self.settings.oracle_max_tokens,
            "stream": False,
        }

        headers = {
            "Authorization": f"Bearer {self.settings.deepseek_api_key}",
            "Content-Type": "application/json"
        }

        data = await self._post(
            f"{self.settings.deepseek_base_url}/chat/completions",
            payload,
            headers,
        )
        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return (
            self._content_from(data),
            self.settings.deepseek_model,
            {
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0)
            },
        )

    async def _complete_proxy(self, system_prompt: str, user_content: str) -> Tuple[str, str, Dict[str, int]]:
        """Generate via the judge proxy, which adds the provider key server-side"""
        if not self.settings.judge_proxy_url:
            logger.warning("Judge proxy URL not set")
            raise AdjudicationTransportError("No judge is configured")

        data = await self._post(
            self.settings.judge_proxy_url,
            {"systemPrompt": system_prompt, "userContent": user_content},
            {"Content-Type": "application/json"},
        )
        return self._content_from(data), str(data.get("model") or "proxy"), {}

"""
GitHub Copilot chat transport.

Mimics the HTTP traffic produced by the VS Code Copilot Chat extension so
that the Copilot back-end accepts the requests from a standalone Python
application.  :func:`send_chat` is stateless: it takes a request and a
bearer token and returns a parsed response or raises
:class:`TransportError`.  Token caching lives in :mod:`.auth`.
"""

import json
import logging
from dataclasses import dataclass, field

import requests

log = logging.getLogger("copilot_chat")

COPILOT_CHAT_URL = "https://api.githubcopilot.com/chat/completions"
COPILOT_MODELS_URL = "https://api.githubcopilot.com/models"


# ---------------------------------------------------------------------------
# Error-handling helpers
# ---------------------------------------------------------------------------

class TransportError(Exception):
    """Network, endpoint or response-format failure.

    Attributes
    ----------
    status_code : int | None
        HTTP status code (``None`` for non-HTTP errors).
    endpoint : str
        The URL that was called.
    model : str
        Model identifier sent in the request.
    response_body : str
        First 500 chars of the response body (often contains the real error).
    payload_summary : dict | None
        Summarised payload (keys + a few values) for reproducing the issue.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        model: str = "",
        response_body: str = "",
        payload_summary: dict | None = None,
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.model = model
        self.response_body = response_body
        self.payload_summary = payload_summary
        super().__init__(message)

    def __str__(self) -> str:  # noqa: D105
        parts = [super().__str__()]
        if self.status_code is not None:
            parts.append(f"  HTTP {self.status_code}")
        if self.endpoint:
            parts.append(f"  Endpoint: {self.endpoint}")
        if self.model:
            parts.append(f"  Model: {self.model}")
        if self.response_body:
            parts.append(f"  Response: {self.response_body[:500]}")
        if self.payload_summary:
            parts.append(f"  Payload keys: {list(self.payload_summary.keys())}")
        return "\n".join(parts)


def _extract_error_detail(response: requests.Response) -> str:
    """Extract a readable error description from an HTTP response.

    Tries the OpenAI-style ``{"error": {"message", "type"}}`` body and
    falls back to the raw text (truncated to 500 chars).
    """
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] if response.text else "(empty body)"
    if isinstance(body, dict) and "error" in body:
        err = body["error"]
        if isinstance(err, dict):
            return f"[{err.get('type', 'error')}] {err.get('message', str(err))}"
        return str(err)
    return response.text[:500]


def _summarise_payload(payload: dict) -> dict:
    """Return a compact summary of a request payload for diagnostics."""
    summary = {}
    for k, v in payload.items():
        if k == "messages":
            summary["messages"] = f"[{len(v)} messages]"
        else:
            summary[k] = v
    return summary


# ---------------------------------------------------------------------------
# Available models
# Keys are human-readable display names; values are the API identifiers.
# ---------------------------------------------------------------------------
MODELS: dict[str, str] = {
    "GPT-4.1":         "gpt-4.1",
    "GPT-4o":          "gpt-4o",
    "Claude Sonnet 4": "claude-sonnet-4",
    "Gemini 2.5 Pro":  "gemini-2.5-pro",
}

DEFAULT_MODEL = "gpt-4.1"

# Headers that mimic VS Code's Copilot Chat extension.
_COPILOT_HEADERS = {
    "Content-Type":           "application/json",
    "Copilot-Integration-Id": "vscode-chat",
    "Editor-Version":         "vscode/1.97.0",
    "Editor-Plugin-Version":  "copilot-chat/0.22.2",
    "User-Agent":             "GitHubCopilotChat/0.22.2",
    "openai-intent":          "conversation-panel",
    "x-github-api-version":   "2023-07-07",
}


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChatRequest:
    """Body of a chat completions request."""

    model: str
    messages: list[dict]
    intent: bool = False
    temperature: float = 0
    top_p: float = 1
    n: int = 1
    stream: bool = False

    @classmethod
    def for_replay(cls, model: str, messages: list[dict]) -> "ChatRequest":
        """Deterministic, non-streaming request used by send and replay."""
        return cls(
            model=model,
            messages=list(messages),
            intent=False,
            temperature=0,
            top_p=1,
            n=1,
            stream=False,
        )

    def to_payload(self) -> dict:
        return {
            "intent":      self.intent,
            "model":       self.model,
            "temperature": self.temperature,
            "top_p":       self.top_p,
            "n":           self.n,
            "stream":      self.stream,
            "messages":    self.messages,
        }


@dataclass(frozen=True)
class Choice:
    content: str


@dataclass(frozen=True)
class ChatResponse:
    """Parsed chat completions response."""

    choices: tuple[Choice, ...] = ()
    id: str | None = None

    @property
    def first_content(self) -> str | None:
        return self.choices[0].content if self.choices else None

    @classmethod
    def from_json(cls, body) -> "ChatResponse":
        """Parse ``{id?, choices: [{message: {content}}]}``.

        Raises :class:`TransportError` when the body does not have that
        shape.  An empty ``choices`` list is valid.
        """
        if not isinstance(body, dict):
            raise TransportError(
                f"Unexpected response type {type(body).__name__}; "
                f"expected a JSON object."
            )
        raw_choices = body.get("choices", [])
        if raw_choices is None:
            raw_choices = []
        if not isinstance(raw_choices, list):
            raise TransportError("Unexpected response format: 'choices' is not a list.")
        choices = []
        for i, raw in enumerate(raw_choices):
            try:
                content = raw["message"]["content"]
            except (KeyError, TypeError) as exc:
                raise TransportError(
                    f"Unexpected response format: choices[{i}] has no "
                    f"'message.content'.",
                    response_body=json.dumps(body)[:500],
                ) from exc
            choices.append(Choice(content=content if content is not None else ""))
        resp_id = body.get("id")
        return cls(choices=tuple(choices), id=str(resp_id) if resp_id else None)


@dataclass
class ModelLimits:
    """Token limits for a specific Copilot model."""

    max_context_window_tokens: int
    max_prompt_tokens: int
    max_output_tokens: int


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def _auth_headers(token: str) -> dict:
    return {**_COPILOT_HEADERS, "Authorization": f"Bearer {token}"}


def send_chat(
    request: ChatRequest,
    token: str,
    *,
    url: str = COPILOT_CHAT_URL,
    timeout: float = 120,
) -> ChatResponse:
    """
    POST *request* to the Copilot chat completions endpoint.

    Parameters
    ----------
    request : The request body (see :class:`ChatRequest`).
    token   : Copilot bearer token.
    url     : Endpoint override (tests, proxies).
    timeout : Seconds before the request is abandoned.

    Raises
    ------
    TransportError
        On network failure, non-2xx status or a malformed body.
    """
    payload = request.to_payload()

    log.debug("[API] ── Sending chat request ──")
    log.debug("[API]   model = %s  |  stream = %s  |  message count = %d",
              request.model, request.stream, len(request.messages))
    for i, m in enumerate(request.messages):
        content = m.get("content", "")
        preview = (content[:120] + "…") if len(content) > 120 else content
        log.debug("[API]   msg[%d] role=%-10s  content=%s",
                  i, m.get("role", "?"), preview)

    try:
        response = requests.post(
            url,
            headers=_auth_headers(token),
            json=payload,
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise TransportError(
            f"Network error — could not reach Copilot API: "
            f"{type(exc).__name__}: {exc}",
            endpoint=url,
            model=request.model,
            payload_summary=_summarise_payload(payload),
        ) from exc

    if not response.ok:
        detail = _extract_error_detail(response)
        raise TransportError(
            f"Copilot API request failed (HTTP {response.status_code}).\n"
            f"{detail}",
            status_code=response.status_code,
            endpoint=url,
            model=request.model,
            response_body=response.text[:500] if response.text else "",
            payload_summary=_summarise_payload(payload),
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise TransportError(
            f"Copilot returned non-JSON response (HTTP {response.status_code}).",
            status_code=response.status_code,
            endpoint=url,
            model=request.model,
            response_body=response.text[:500],
        ) from exc

    parsed = ChatResponse.from_json(body)
    if not parsed.choices:
        log.warning("[API] Response has no choices. Body: %s",
                    json.dumps(body)[:500])
    return parsed


def fetch_model_limits(token: str, *, url: str = COPILOT_MODELS_URL) -> dict[str, ModelLimits]:
    """Fetch per-model token limits from the Copilot models endpoint.

    On any failure logs a warning and returns an empty mapping.
    """
    try:
        resp = requests.get(url, headers=_auth_headers(token), timeout=30)
        log.debug("[API] GET %s → %d", url, resp.status_code)
        if not resp.ok:
            log.warning("[API] Failed to fetch model list: HTTP %d — %s",
                        resp.status_code, _extract_error_detail(resp))
            return {}
        body = resp.json()
    except (requests.RequestException, ValueError) as exc:
        log.warning("[API] Failed to fetch model list: %s: %s. Endpoint: %s",
                    type(exc).__name__, exc, url)
        return {}

    # The endpoint may return {"data": [...]} or a bare list.
    if isinstance(body, dict) and "data" in body:
        models = body["data"]
    elif isinstance(body, list):
        models = body
    else:
        log.warning("[API] Unexpected models response format: %s",
                    type(body).__name__)
        return {}

    cache: dict[str, ModelLimits] = {}
    for entry in models:
        if not isinstance(entry, dict):
            continue
        model_id: str = entry.get("id", "")
        limits = (entry.get("capabilities") or {}).get("limits") or {}
        if not model_id or not limits:
            continue
        lim = ModelLimits(
            max_context_window_tokens=limits.get("max_context_window_tokens", 8192),
            max_prompt_tokens=limits.get("max_prompt_tokens", 8192),
            max_output_tokens=limits.get("max_output_tokens", 1024),
        )
        cache[model_id] = lim
        _store_model_aliases(cache, model_id, lim)
        log.info("[API] Model %s limits — context: %d, prompt: %d, output: %d",
                 model_id, lim.max_context_window_tokens,
                 lim.max_prompt_tokens, lim.max_output_tokens)
    return cache


def _store_model_aliases(
    cache: dict[str, ModelLimits],
    model_id: str,
    lim: ModelLimits,
) -> None:
    """Store dotted/hyphenated variants (``claude-3.5`` ↔ ``claude-3-5``)."""
    for alt in (model_id.replace(".", "-"), model_id.replace("-", ".")):
        if alt != model_id and alt not in cache:
            cache[alt] = lim

    parts = model_id.replace(".", "-").split("-")
    for i in range(1, len(parts)):
        if parts[i] and parts[i][0].isdigit():
            variant = "-".join(parts[:i]) + "-" + ".".join(parts[i:])
            if variant != model_id and variant not in cache:
                cache[variant] = lim

import logging
import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Dict, List, Optional

from google import genai
from google.genai import types as genai_types
from openai import OpenAI

from config import settings
from errors import CollaboratorUnavailable, InvalidAIResponse

logger = logging.getLogger(__name__)

LLM_PROVIDER_PRIORITY = ["gemini", "perplexity", "openai"]

Messages = List[Dict[str, str]]
Collaborator = Callable[[Messages], str]

_openai_client: Optional[OpenAI] = None
_perplexity_client: Optional[OpenAI] = None
_gemini_client: Optional[genai.Client] = None


def _get_openai_client() -> OpenAI:
    """
    Lazily create a standard OpenAI client using OPENAI_API_KEY.
    """
    global _openai_client
    if _openai_client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise CollaboratorUnavailable(
                "OPENAI_API_KEY is not set, but provider='openai' was requested."
            )
        _openai_client = OpenAI(
            api_key=api_key,
            timeout=settings.llm_client_timeout,
            max_retries=0,
        )
    return _openai_client


def _get_perplexity_client() -> OpenAI:
    """
    Lazily create an OpenAI-compatible client pointed at Perplexity's Sonar API.
    Uses PERPLEXITY_API_KEY.
    """
    global _perplexity_client
    if _perplexity_client is None:
        api_key = os.getenv("PERPLEXITY_API_KEY")
        if not api_key:
            raise CollaboratorUnavailable(
                "PERPLEXITY_API_KEY is not set, but provider='perplexity' was requested."
            )
        _perplexity_client = OpenAI(
            api_key=api_key,
            base_url="https://api.perplexity.ai",
            timeout=settings.llm_client_timeout,
            max_retries=0,
        )
    return _perplexity_client


def _get_gemini_client() -> genai.Client:
    """
    Lazily create a Google GenAI client for Gemini models.

    We explicitly read GEMINI_API_KEY or GOOGLE_API_KEY so that
    errors are obvious if you're not configured.
    """
    global _gemini_client
    if _gemini_client is not None:
        return _gemini_client

    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise CollaboratorUnavailable(
            "GEMINI_API_KEY (or GOOGLE_API_KEY) is not set, "
            "but provider='gemini' was requested."
        )

    _gemini_client = genai.Client(
        api_key=api_key,
        # HttpOptions.timeout is in milliseconds
        http_options=genai_types.HttpOptions(timeout=int(settings.llm_client_timeout * 1000)),
    )
    return _gemini_client


def _call_openai(
    messages: Messages,
    model: Optional[str],
    temperature: float,
    json_mode: bool,
) -> str:
    client = _get_openai_client()
    used_model = model or settings.llm_model

    # Some newer models (like gpt-5.x) only accept the default temperature.
    model_requires_default_temp = used_model.startswith("gpt-5")

    kwargs: Dict[str, object] = {
        "model": used_model,
        "messages": messages,
    }

    if not model_requires_default_temp:
        kwargs["temperature"] = temperature

    if json_mode:
        # Strongly encourage valid JSON so our parsing doesn't crash.
        kwargs["response_format"] = {"type": "json_object"}

    resp = client.chat.completions.create(**kwargs)
    return resp.choices[0].message.content or ""


def _combine_messages_for_gemini(messages: Messages) -> str:
    """
    Flatten OpenAI-style chat messages into a single text prompt for Gemini.
    System messages are kept at the top as instructions.
    """
    system_parts = []
    convo_parts = []

    for m in messages:
        role = m.get("role", "")
        content = m.get("content", "")
        if not content:
            continue
        if role == "system":
            system_parts.append(content)
        else:
            convo_parts.append(f"{role.upper()}: {content}")

    system_text = "\n\n".join(system_parts).strip()
    convo_text = "\n\n".join(convo_parts).strip()

    if system_text and convo_text:
        return f"SYSTEM INSTRUCTIONS:\n{system_text}\n\nCONVERSATION:\n{convo_text}"
    elif system_text:
        return f"SYSTEM INSTRUCTIONS:\n{system_text}"
    else:
        return convo_text


def _call_gemini(
    messages: Messages,
    model: Optional[str],
    temperature: float,
    json_mode: bool,
) -> str:
    client = _get_gemini_client()
    used_model = model or settings.gemini_model

    cfg_kwargs: Dict[str, object] = {"temperature": float(temperature)}
    if json_mode:
        cfg_kwargs["response_mime_type"] = "application/json"

    response = client.models.generate_content(
        model=used_model,
        contents=_combine_messages_for_gemini(messages),
        config=genai_types.GenerateContentConfig(**cfg_kwargs),
    )

    # For text-only responses, .text is the primary field
    text = getattr(response, "text", None)
    if isinstance(text, str) and text:
        return text

    # Fallback: assemble from parts
    parts = []
    for cand in getattr(response, "candidates", None) or []:
        content = getattr(cand, "content", None)
        if not content:
            continue
        for part in getattr(content, "parts", None) or []:
            t = getattr(part, "text", None)
            if isinstance(t, str):
                parts.append(t)
    return "\n".join(parts)


def _call_perplexity(
    messages: Messages,
    model: Optional[str],
    temperature: float,
    json_mode: bool,
) -> str:
    """
    Call Perplexity's Sonar API using the OpenAI client with custom base_url.
    """
    client = _get_perplexity_client()
    used_model = model or settings.perplexity_model

    # Perplexity does not document response_format; JSON is requested in the prompt.
    resp = client.chat.completions.create(
        model=used_model,
        messages=messages,
        temperature=float(temperature),
    )
    return resp.choices[0].message.content or ""


def get_chat_completion(
    messages: Messages,
    model: Optional[str] = None,
    temperature: float = 0.0,
    json_mode: bool = False,
    provider: Optional[str] = None,
) -> str:
    """
    Unified chat completion helper used by the rest of the backend.

    - messages: list of {"role": "system"|"user"|"assistant", "content": str}
    - model: optional explicit model name
    - temperature: sampling temperature (where applicable)
    - json_mode: if True, we strongly encourage the model to output valid JSON
    - provider: "openai" | "gemini" | "perplexity" (defaults to env LLM_PROVIDER)
    """
    used_provider = (provider or settings.llm_provider or "openai").lower()

    if used_provider == "gemini":
        return _call_gemini(messages, model, temperature, json_mode)
    elif used_provider == "perplexity":
        return _call_perplexity(messages, model, temperature, json_mode)
    else:
        # Anything unknown falls back to OpenAI
        return _call_openai(messages, model, temperature, json_mode)


def parse_llm_providers_field(raw: Optional[str]) -> List[str]:
    """
    Parse a comma-separated 'llm_providers' form field from the frontend
    into a normalized list of provider identifiers: 'openai', 'gemini', 'perplexity'.
    """
    if not raw:
        return []

    parts = [p.strip().lower() for p in raw.split(",")]
    providers: List[str] = []

    for p in parts:
        if p in ("openai", "chatgpt", "gpt"):
            val = "openai"
        elif p in ("gemini", "google"):
            val = "gemini"
        elif p in ("perplexity", "pplx", "perplixity"):
            val = "perplexity"
        else:
            continue
        if val not in providers:
            providers.append(val)

    return providers


def choose_llm_from_list(candidates: List[str]) -> Dict[str, str]:
    """
    Given a list of provider candidates from the UI, choose a single
    provider + model to use for this request.

    Priority: gemini, perplexity, openai. With no candidates we fall back to
    the environment defaults.
    """
    if not candidates:
        provider = settings.llm_provider
    else:
        provider = candidates[0]
        for pref in LLM_PROVIDER_PRIORITY:
            if pref in candidates:
                provider = pref
                break

    if provider == "gemini":
        model = settings.gemini_model
    elif provider == "perplexity":
        model = settings.perplexity_model
    else:
        provider = "openai"
        model = settings.llm_model

    return {"provider": provider, "model": model}


def make_collaborator(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    budget_seconds: Optional[float] = None,
) -> Collaborator:
    """
    Return a `messages -> text` callable bound to one provider/model.

    The call is bounded by `budget_seconds`; a timeout or any transport error
    becomes CollaboratorUnavailable so the request fails as a whole.
    """
    used_temperature = settings.llm_temperature if temperature is None else temperature
    budget = settings.llm_budget_seconds if budget_seconds is None else budget_seconds

    def _collaborate(messages: Messages) -> str:
        logger.info("Calling %s (%s), budget %.0fs", provider or settings.llm_provider, model or "default", budget)
        # One worker per call: the budget starts when the call does, never
        # while queued behind other requests.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-call")
        future = executor.submit(
            get_chat_completion,
            messages,
            model,
            used_temperature,
            True,
            provider,
        )
        try:
            text = future.result(timeout=budget)
        except FuturesTimeout as e:
            logger.error("LLM request timed out after %.0f seconds", budget)
            raise CollaboratorUnavailable(
                f"The AI service did not answer within {budget:g} seconds."
            ) from e
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            logger.error("LLM error: %s: %s", type(e).__name__, e)
            raise CollaboratorUnavailable("The AI service request failed.") from e
        finally:
            # An overrun call finishes in the background; its result is dropped.
            executor.shutdown(wait=False)

        if not text or not text.strip():
            raise InvalidAIResponse("AI response was empty.")
        logger.info("LLM response length: %d chars", len(text))
        return text

    return _collaborate

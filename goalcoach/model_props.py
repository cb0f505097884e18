# goalcoach/model_props.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from goalcoach import settings


#! MODEL PROFILES
# One variant per provider family. Adding a model means adding a variant here,
# not another branch at the call sites.

RAW_JSON_INSTRUCTION = (
    "Always respond with raw JSON objects without any markdown formatting. "
    "Never use ```json or ``` tags."
)


@dataclass(frozen=True)
class DeepseekProfile:
    model_name: str = settings.DEEPSEEK_MODEL
    endpoint: str = settings.DEEPSEEK_API_URL
    api_key_env: str = "DEEPSEEK_API_KEY"
    instruction_template: str = "{INSTRUCTION}\n\n" + RAW_JSON_INSTRUCTION
    provider: str = field(default="openai-compatible", init=False)

    def api_key(self) -> Optional[str]:
        return settings.DEEPSEEK_API_KEY


@dataclass(frozen=True)
class OpenAIProfile:
    model_name: str = "gpt-4o-mini"
    endpoint: Optional[str] = settings.OPENAI_BASE_URL
    api_key_env: str = "OPENAI_API_KEY"
    instruction_template: str = "{INSTRUCTION}\n\n" + RAW_JSON_INSTRUCTION
    provider: str = field(default="openai-compatible", init=False)

    def api_key(self) -> Optional[str]:
        return settings.OPENAI_API_KEY


@dataclass(frozen=True)
class VertexProfile:
    model_name: str = "gemini-2.0-flash"
    endpoint: Optional[str] = None
    api_key_env: str = "GOOGLE_APPLICATION_CREDENTIALS"
    instruction_template: str = "{INSTRUCTION}\n\nReturn only the requested content, no preamble."
    project: Optional[str] = settings.PROJECT_ID
    region: str = settings.REGION
    provider: str = field(default="vertex", init=False)

    def api_key(self) -> Optional[str]:
        return None


ModelProfile = Union[DeepseekProfile, OpenAIProfile, VertexProfile]


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name: str) -> bool:
    prefixes = ("gpt-", "gpt4", "o1", "o3", "o4")
    return any(model_name.startswith(p) for p in prefixes)


def is_vertex_model(model_name: str) -> bool:
    return model_name.startswith("gemini-")


def resolve_model_profile(model_name: Optional[str] = None) -> ModelProfile:
    """
    Resolve a model tag (e.g. "deepseek-chat", "gpt-4o-mini", "gemini-2.0-flash")
    into its profile variant. Empty -> GOALCOACH_MODEL -> DEEPSEEK_MODEL.
    """
    raw = (model_name or settings.DEFAULT_MODEL or settings.DEEPSEEK_MODEL or "").strip()
    if not raw:
        raise ValueError("resolve_model_profile: No Model Name passed.")
    if raw.startswith("deepseek"):
        return DeepseekProfile(model_name=raw)
    if is_openai_model(raw):
        return OpenAIProfile(model_name=raw)
    if is_vertex_model(raw):
        return VertexProfile(model_name=raw)
    raise ValueError(f"resolve_model_profile: Unknown model family for '{raw}'.")


def render_instruction(profile: ModelProfile, instruction: str) -> str:
    return profile.instruction_template.replace("{INSTRUCTION}", instruction or "").strip()


def request_params(profile: ModelProfile, temperature: float | None, max_tokens: int | None) -> Dict[str, Any]:
    return {
        "temperature": settings.DEFAULT_TEMPERATURE if temperature is None else temperature,
        "max_tokens": settings.DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
    }

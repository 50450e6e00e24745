# assess_core/llm_cfg.py
from __future__ import annotations
import os, json, pathlib
from dataclasses import dataclass
from typing import Tuple, Union
from openai import AzureOpenAI, OpenAI

# settings field -> environment variable
_AZURE_ENV = {
    "endpoint": "AZURE_OPENAI_ENDPOINT",
    "api_key": "AZURE_OPENAI_API_KEY",
    "api_version": "AZURE_OPENAI_API_VERSION",
    "deployment": "AZURE_OPENAI_DEPLOYMENT",
}
AZURE_CONFIG_FILE = os.getenv("AZURE_CONFIG_FILE", ".azure_config.json")

@dataclass(frozen=True)
class AzureSettings:
    endpoint: str
    api_key: str
    deployment: str
    api_version: str

@dataclass(frozen=True)
class OllamaSettings:
    host: str
    model: str

def _file_values(path: str) -> dict:
    p = pathlib.Path(path)
    if not p.is_file():
        return {}
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return raw if isinstance(raw, dict) else {}

def azure_settings() -> AzureSettings:
    """Environment first; blanks are filled from the local config file."""
    values = {field: os.getenv(var, "") for field, var in _AZURE_ENV.items()}
    if not all(values.values()):
        stored = _file_values(AZURE_CONFIG_FILE)
        values = {f: v or str(stored.get(f) or "") for f, v in values.items()}
    missing = sorted(f for f, v in values.items() if not v)
    if missing:
        raise RuntimeError("Azure OpenAI not configured. Missing: " + ", ".join(missing))
    return AzureSettings(**values)

def ollama_settings() -> OllamaSettings:
    return OllamaSettings(
        host=os.getenv("OLLAMA_HOST", "http://localhost:11434").rstrip("/"),
        model=os.getenv("OLLAMA_MODEL", "llama3.1"),
    )

def azure_configured() -> bool:
    try:
        azure_settings()
    except RuntimeError:
        return False
    return True

def client(backend: str) -> Tuple[Union[AzureOpenAI, OpenAI], str]:
    """Chat client and model/deployment name for ``backend``."""
    if backend == "azure":
        s = azure_settings()
        cli = AzureOpenAI(azure_endpoint=s.endpoint, api_key=s.api_key, api_version=s.api_version)
        return cli, s.deployment
    if backend == "ollama":
        s = ollama_settings()
        # ollama speaks the OpenAI chat protocol under /v1 and ignores the key
        return OpenAI(base_url=f"{s.host}/v1", api_key="ollama"), s.model
    raise RuntimeError(f"unsupported LLM backend: {backend!r}")

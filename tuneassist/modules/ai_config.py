"""
AI configuration module for TuneAssist

Holds provider selection, the cloud API key and the local model choice.
Created once at application start, changed only through the setters and
handed to the analysis handler on each request.
"""

import os
from typing import Dict, Optional


PROVIDERS = ('cloud', 'local')
LOCAL_BACKENDS = ('ollama', 'llamafile')


class AIConfigError(ValueError):
    """Invalid AI configuration value or configuration not ready for analysis"""


class AIConfig:
    """Provider/model configuration for tuning analysis requests"""

    def __init__(self, provider: str = 'cloud', gemini_api_key: Optional[str] = None,
                 gemini_model: str = 'gemini-1.5-flash', local_backend: str = 'ollama',
                 local_model: str = 'llama3', gemini_base_url: Optional[str] = None,
                 ollama_base_url: Optional[str] = None, llamafile_base_url: Optional[str] = None,
                 request_timeout: float = 120.0):
        if provider not in PROVIDERS:
            raise AIConfigError(f"Invalid provider: {provider}")
        if local_backend not in LOCAL_BACKENDS:
            raise AIConfigError(f"Invalid local backend: {local_backend}")
        self.provider = provider
        self.gemini_api_key = gemini_api_key or None
        self.gemini_model = gemini_model
        self.local_backend = local_backend
        self.local_model = local_model
        self.gemini_base_url = gemini_base_url or 'https://generativelanguage.googleapis.com'
        self.ollama_base_url = ollama_base_url or 'http://localhost:11434'
        self.llamafile_base_url = llamafile_base_url or 'http://localhost:8081'
        self.request_timeout = request_timeout

    @classmethod
    def from_env(cls) -> 'AIConfig':
        """Build configuration from TA_* environment variables."""
        try:
            timeout = float(os.getenv('TA_REQUEST_TIMEOUT', '120'))
        except ValueError:
            timeout = 120.0
        return cls(
            provider=os.getenv('TA_AI_PROVIDER', 'cloud').lower(),
            gemini_api_key=os.getenv('GEMINI_API_KEY'),
            gemini_model=os.getenv('TA_GEMINI_MODEL', 'gemini-1.5-flash'),
            local_backend=os.getenv('TA_LOCAL_BACKEND', 'ollama').lower(),
            local_model=os.getenv('TA_MODEL', 'llama3'),
            gemini_base_url=os.getenv('GEMINI_BASE_URL'),
            ollama_base_url=os.getenv('OLLAMA_BASE_URL'),
            llamafile_base_url=os.getenv('LLAMAFILE_BASE_URL'),
            request_timeout=timeout,
        )

    def set_gemini_key(self, api_key) -> None:
        if not api_key or not isinstance(api_key, str) or not api_key.strip():
            raise AIConfigError('Invalid API key')
        self.gemini_api_key = api_key.strip()

    def set_provider(self, provider) -> None:
        if provider not in PROVIDERS:
            raise AIConfigError('Invalid provider')
        self.provider = provider

    def set_local_model(self, model, backend: Optional[str] = None) -> None:
        if not model or not isinstance(model, str):
            raise AIConfigError('Model name required')
        if backend is not None:
            if backend not in LOCAL_BACKENDS:
                raise AIConfigError(f"Invalid local backend: {backend}")
            self.local_backend = backend
        self.local_model = model

    @property
    def active_model(self) -> str:
        return self.gemini_model if self.provider == 'cloud' else self.local_model

    @property
    def active_backend(self) -> str:
        return 'gemini' if self.provider == 'cloud' else self.local_backend

    def ensure_ready(self) -> None:
        """Raise AIConfigError when the selected provider cannot run an analysis."""
        if self.provider == 'cloud' and not self.gemini_api_key:
            raise AIConfigError('Gemini API key not configured')

    def status(self, has_local_model: bool = False) -> Dict:
        """Public view of the configuration; the API key itself is never exposed."""
        return {
            'hasGeminiKey': bool(self.gemini_api_key),
            'hasLocalModel': has_local_model,
            'currentProvider': self.provider,
            'localBackend': self.local_backend,
            'localModel': self.local_model,
            'geminiModel': self.gemini_model,
        }

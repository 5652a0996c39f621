#!/usr/bin/env python3
"""
LLM Interface Module - Interface to cloud and local LLM backends
Gemini (cloud), Ollama and llamafile (local)
"""

import os
from typing import Dict, List, Optional

import requests

from .ai_config import AIConfig


class LLMError(RuntimeError):
    """LLM backend unreachable, failed, or returned nothing usable"""


class LLMInterface:
    """Interface to various LLM backends (Gemini, Ollama, Llamafile)"""

    def __init__(self, llm_backend: str = 'ollama', model: str = 'llama3',
                 base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: float = 120.0):
        """
        Initialize LLM Interface with configuration.

        Args:
            llm_backend: The LLM backend to use ('gemini', 'ollama', 'llamafile')
            model: The model name to use
            base_url: Backend base URL; falls back to the backend's env var/default
            api_key: API key for cloud backends
            timeout: Per-request timeout in seconds
        """
        self.llm_backend = llm_backend
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: AIConfig) -> 'LLMInterface':
        """Build the interface for the provider currently selected in config."""
        if config.provider == 'cloud':
            return cls(llm_backend='gemini', model=config.gemini_model,
                       base_url=config.gemini_base_url, api_key=config.gemini_api_key,
                       timeout=config.request_timeout)
        base = config.ollama_base_url if config.local_backend == 'ollama' else config.llamafile_base_url
        return cls(llm_backend=config.local_backend, model=config.local_model,
                   base_url=base, timeout=config.request_timeout)

    def _base(self, env_var: str, default: str) -> str:
        return (self.base_url or os.getenv(env_var, default)).rstrip('/')

    @staticmethod
    def _json_body(response, backend: str) -> Dict:
        """Decoded JSON object of a backend reply; anything else is an LLMError."""
        try:
            result = response.json()
        except ValueError:
            raise LLMError(f"{backend} returned invalid JSON") from None
        if not isinstance(result, dict):
            raise LLMError(f"{backend} returned an unexpected JSON payload")
        return result

    def query_ollama(self, prompt: str, options_overrides: Optional[Dict] = None,
                     json_mode: bool = False) -> str:
        """Query Ollama API - automatically selects chat vs generate based on model"""
        base = self._base('OLLAMA_BASE_URL', 'http://localhost:11434')

        # Check if we should use chat mode (auto-detect GPT-OSS models or force via env)
        use_chat_mode = os.getenv('TA_USE_CHAT_MODE', 'auto').lower()
        force_chat = (use_chat_mode == 'force') or (use_chat_mode == 'auto' and self.model.startswith('gpt-oss'))

        if force_chat:
            # GPT-OSS needs temperature=1.0, top_p=1.0 by default
            options = {
                'temperature': float(os.getenv('TA_TEMP', '1.0')),
                'top_p': float(os.getenv('TA_TOP_P', '1.0')),
                'num_predict': int(os.getenv('TA_NUM_PREDICT', '2048')),
                'num_ctx': int(os.getenv('TA_NUM_CTX', '8192')),
            }
        else:
            options = {
                'temperature': float(os.getenv('TA_TEMP', '0.2')),
                'num_predict': int(os.getenv('TA_NUM_PREDICT', '2048')),
                'num_ctx': int(os.getenv('TA_NUM_CTX', '8192')),
            }

        if options_overrides:
            options.update({k: v for k, v in options_overrides.items() if v is not None})

        if force_chat:
            url = f'{base}/api/chat'
            payload = {
                'model': self.model,
                'messages': [
                    {'role': 'system', 'content': 'You are an expert engine tuning assistant.'},
                    {'role': 'user', 'content': prompt}
                ],
                'stream': False,
                'options': options,
            }
        else:
            url = f'{base}/api/generate'
            payload = {
                'model': self.model,
                'prompt': prompt,
                'stream': False,
                'options': options,
            }
        if json_mode:
            payload['format'] = 'json'

        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.ConnectionError as e:
            raise LLMError('Could not connect to the local AI server. Is Ollama running?') from e
        except requests.exceptions.RequestException as e:
            raise LLMError(f'Ollama request failed: {e}') from e

        if response.status_code != 200:
            raise LLMError(f'Ollama API request failed with status {response.status_code}')

        result = self._json_body(response, 'Ollama')
        if force_chat and isinstance(result.get('message'), dict):
            text = result['message'].get('content')
        else:
            text = result.get('response')
        if not text or not isinstance(text, str):
            raise LLMError("Ollama response did not contain a 'response' field.")
        return text

    def query_llamafile(self, prompt: str, options_overrides: Optional[Dict] = None,
                        json_mode: bool = False) -> str:
        """Query llamafile server"""
        base = self._base('LLAMAFILE_BASE_URL', 'http://localhost:8081')
        payload = {'prompt': prompt, 'n_predict': int(os.getenv('TA_NUM_PREDICT', '2048'))}
        if options_overrides:
            if options_overrides.get('temperature') is not None:
                payload['temperature'] = options_overrides['temperature']
            if options_overrides.get('num_predict') is not None:
                payload['n_predict'] = options_overrides['num_predict']
            if options_overrides.get('top_p') is not None:
                payload['top_p'] = options_overrides['top_p']
        try:
            response = requests.post(f'{base}/completion', json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise LLMError(f'Llamafile not available: {e}') from e
        if response.status_code != 200:
            raise LLMError(f'Llamafile request failed with status {response.status_code}')
        text = self._json_body(response, 'Llamafile').get('content')
        if not text or not isinstance(text, str):
            raise LLMError('No response from llamafile')
        return text

    def query_gemini(self, prompt: str, options_overrides: Optional[Dict] = None,
                     json_mode: bool = False) -> str:
        """Query the Gemini generateContent REST endpoint"""
        if not self.api_key:
            raise LLMError('Gemini API key not configured')
        base = self._base('GEMINI_BASE_URL', 'https://generativelanguage.googleapis.com')

        generation_config = {}
        overrides = options_overrides or {}
        if overrides.get('temperature') is not None:
            generation_config['temperature'] = overrides['temperature']
        if overrides.get('top_p') is not None:
            generation_config['topP'] = overrides['top_p']
        if overrides.get('num_predict') is not None:
            generation_config['maxOutputTokens'] = overrides['num_predict']
        if json_mode:
            generation_config['responseMimeType'] = 'application/json'

        payload = {'contents': [{'role': 'user', 'parts': [{'text': prompt}]}]}
        if generation_config:
            payload['generationConfig'] = generation_config

        try:
            response = requests.post(
                f'{base}/v1beta/models/{self.model}:generateContent',
                json=payload,
                headers={'x-goog-api-key': self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise LLMError(f'Gemini API not reachable: {e}') from e

        if response.status_code != 200:
            raise LLMError(f'Gemini API request failed with status {response.status_code}')

        result = self._json_body(response, 'Gemini')
        try:
            parts = result['candidates'][0]['content']['parts']
        except (KeyError, IndexError, TypeError):
            raise LLMError('Gemini response contained no candidates') from None
        if not isinstance(parts, list):
            raise LLMError('Gemini response contained no candidates')
        text = ''.join(p['text'] for p in parts if isinstance(p, dict) and isinstance(p.get('text'), str))
        if not text:
            raise LLMError('Gemini response was empty')
        return text

    def get_response(self, prompt: str, *, temperature: Optional[float] = None,
                     num_predict: Optional[int] = None, top_p: Optional[float] = None,
                     json_mode: bool = False) -> str:
        """Get response from configured LLM with optional per-request options."""
        overrides = {'temperature': temperature, 'num_predict': num_predict, 'top_p': top_p}
        if self.llm_backend == 'gemini':
            return self.query_gemini(prompt, options_overrides=overrides, json_mode=json_mode)
        elif self.llm_backend == 'ollama':
            return self.query_ollama(prompt, options_overrides=overrides, json_mode=json_mode)
        elif self.llm_backend == 'llamafile':
            return self.query_llamafile(prompt, options_overrides=overrides, json_mode=json_mode)
        else:
            raise LLMError(f"Unsupported LLM backend: {self.llm_backend}")

    def list_local_models(self) -> List[Dict]:
        """List models pulled into the local Ollama server."""
        base = self._base('OLLAMA_BASE_URL', 'http://localhost:11434')
        try:
            response = requests.get(f'{base}/api/tags', timeout=5)
        except requests.exceptions.RequestException as e:
            raise LLMError(f'Ollama error: {e}') from e
        if response.status_code != 200:
            raise LLMError('Could not connect to Ollama')
        return [
            {
                'name': m['name'],
                'size': m.get('size', 'unknown'),
                'modified': m.get('modified_at', ''),
                'current': m['name'] == self.model,
            }
            for m in self._json_body(response, 'Ollama').get('models', [])
        ]

    def local_model_available(self) -> bool:
        """True when the configured local model can serve requests."""
        if self.llm_backend == 'ollama':
            try:
                names = [m['name'] for m in self.list_local_models()]
            except LLMError:
                return False
            # Ollama reports "llama3:latest" for a model pulled as "llama3"
            return self.model in names or f'{self.model}:latest' in names
        if self.llm_backend == 'llamafile':
            base = self._base('LLAMAFILE_BASE_URL', 'http://localhost:8081')
            try:
                return requests.get(f'{base}/health', timeout=5).status_code == 200
            except requests.exceptions.RequestException:
                return False
        return False

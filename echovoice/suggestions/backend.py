"""
echovoice/suggestions/backend.py — Generative backends.

A backend turns a prompt into raw reply text. It may fail in any way; the
engine treats every failure as transient and falls back to the rules.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from echovoice.core.errors import ResourceUnavailableError, TransientBackendError
from echovoice.core.logger import get_logger


@runtime_checkable
class GenerativeBackend(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class HttpGenerativeBackend:
    """
    POSTs ``{"prompt": ...}`` to a JSON endpoint.

    The reply body may be a JSON array of suggestions or an object with a
    ``suggestions`` (array) or ``text`` (string) field.

    Args:
        endpoint: Full URL of the generation endpoint.
        api_key: Optional bearer token.
        timeout_s: Per-request timeout.
        client: Optional shared :class:`httpx.AsyncClient`.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout_s: float = 8.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._endpoint = endpoint
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._timeout = timeout_s
        self._client = client

    async def generate(self, prompt: str) -> str:
        payload = {"prompt": prompt}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._endpoint, json=payload, headers=self._headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._endpoint, json=payload, headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise TransientBackendError(f"generation request failed: {exc}") from exc
        except ValueError as exc:
            raise TransientBackendError(f"generation reply is not JSON: {exc}") from exc
        return _reply_text(body)


def _reply_text(body: Any) -> str:
    if isinstance(body, list):
        return json.dumps(body)
    if isinstance(body, dict):
        if isinstance(body.get("suggestions"), list):
            return json.dumps(body["suggestions"])
        if isinstance(body.get("text"), str):
            return body["text"]
    raise TransientBackendError("generation reply has no suggestions")


class TransformersBackend:
    """
    Local causal LM through Hugging Face ``transformers``.

    The model is loaded lazily on first use; generation runs in a worker
    thread so the event loop stays responsive.
    """

    def __init__(
        self,
        model_id: str,
        max_new_tokens: int = 200,
        temperature: float = 0.7,
    ) -> None:
        self._model_id = model_id
        self._max_new_tokens = max_new_tokens
        self._temperature = temperature
        self._model: Any = None
        self._tokenizer: Any = None
        self._lock = threading.Lock()
        self._log = get_logger()

    def load(self) -> None:
        """Load tokenizer and weights from the local cache (idempotent)."""
        with self._lock:
            if self._model is not None:
                return
            # Deferred imports: avoid import-time GPU allocation
            import torch  # type: ignore
            from transformers import AutoModelForCausalLM, AutoTokenizer  # type: ignore

            t0 = time.monotonic()
            try:
                self._tokenizer = AutoTokenizer.from_pretrained(self._model_id)
                self._model = AutoModelForCausalLM.from_pretrained(
                    self._model_id,
                    torch_dtype=torch.float16 if torch.cuda.is_available() else torch.float32,
                    low_cpu_mem_usage=True,
                )
            except OSError as exc:
                raise ResourceUnavailableError(
                    f"Model '{self._model_id}' could not be loaded: {exc}"
                ) from exc
            self._log.perf(
                "suggestions", "model_loaded", (time.monotonic() - t0) * 1000.0,
                {"model_id": self._model_id},
            )

    async def generate(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate_sync, prompt)

    def _generate_sync(self, prompt: str) -> str:
        import torch  # type: ignore

        self.load()
        if getattr(self._tokenizer, "chat_template", None):
            text = self._tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                tokenize=False,
                add_generation_prompt=True,
            )
        else:
            text = prompt
        device = next(self._model.parameters()).device
        inputs = self._tokenizer(text, return_tensors="pt").to(device)
        input_length = inputs["input_ids"].shape[1]
        with torch.no_grad():
            outputs = self._model.generate(
                **inputs,
                max_new_tokens=self._max_new_tokens,
                temperature=self._temperature,
                do_sample=self._temperature > 0,
                pad_token_id=self._tokenizer.eos_token_id,
            )
        # Decode only the new tokens
        return self._tokenizer.decode(outputs[0][input_length:], skip_special_tokens=True).strip()

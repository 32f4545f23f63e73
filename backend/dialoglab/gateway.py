from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings


logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
	"""Raised when a remote inference call fails or returns an unusable payload."""


class InferenceClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
		self.api_key = api_key or settings.openai_api_key
		if not self.api_key:
			raise ValueError("OPENAI_API_KEY is not configured")
		self.base_url = (base_url or settings.openai_base_url).rstrip("/")
		self.chat_model = settings.chat_model
		self.vision_model = settings.vision_model
		self.tts_model = settings.tts_model
		self.tts_voice = settings.tts_voice
		self.transcribe_model = settings.transcribe_model
		self._headers = {"Authorization": f"Bearer {self.api_key}"}
		self._client = httpx.AsyncClient(timeout=timeout or settings.gateway_timeout)

	async def chat(
		self,
		messages: List[Dict[str, Any]],
		*,
		model: Optional[str] = None,
		temperature: float = 0.7,
		max_tokens: int = 200,
	) -> str:
		payload: Dict[str, Any] = {
			"model": model or self.chat_model,
			"messages": messages,
			"temperature": temperature,
			"max_tokens": max_tokens,
		}
		r = await self._post("/chat/completions", json=payload)
		try:
			data = r.json()
			text = data["choices"][0]["message"]["content"]
		except Exception:
			raise GatewayError(f"Unexpected chat response: {r.text[:200]}")
		if not isinstance(text, str) or not text.strip():
			raise GatewayError("Chat completion returned empty content")
		return text.strip()

	async def describe_image(self, image_url: str, question: str, *, system: Optional[str] = None, max_tokens: int = 300) -> str:
		messages: List[Dict[str, Any]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append(
			{
				"role": "user",
				"content": [
					{"type": "text", "text": question},
					{"type": "image_url", "image_url": {"url": image_url}},
				],
			}
		)
		return await self.chat(messages, model=self.vision_model, max_tokens=max_tokens)

	async def speak(self, text: str) -> bytes:
		payload = {"model": self.tts_model, "voice": self.tts_voice, "input": text}
		r = await self._post("/audio/speech", json=payload)
		if not r.content:
			raise GatewayError("Speech synthesis returned no audio")
		return r.content

	async def transcribe(self, audio: bytes, *, filename: str = "audio.webm", mime_type: str = "audio/webm") -> str:
		if not audio:
			raise GatewayError("Empty audio payload")
		r = await self._post(
			"/audio/transcriptions",
			data={"model": self.transcribe_model},
			files={"file": (filename, audio, mime_type)},
		)
		try:
			return str(r.json().get("text", "")).strip()
		except Exception:
			raise GatewayError(f"Unexpected transcription response: {r.text[:200]}")

	async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
		url = f"{self.base_url}{path}"
		try:
			r = await self._client.post(url, headers=self._headers, **kwargs)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			logger.warning("Gateway %s failed with status %s", path, http_err.response.status_code)
			raise GatewayError(f"{path} returned {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			logger.warning("Gateway %s unreachable: %s", path, net_err)
			raise GatewayError(f"{path} request failed: {net_err}") from net_err
		return r

	async def aclose(self) -> None:
		await self._client.aclose()

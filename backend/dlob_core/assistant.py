from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Sequence, Tuple

import httpx

from .errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

SYSTEM_PROMPT = (
    "Kamu adalah DLOB AI, asisten virtual untuk komunitas badminton DLOB di Indonesia. "
    "Jawab dengan bahasa Indonesia yang ramah dan santai. Latihan rutin setiap Sabtu malam. "
    "Biaya sesi Rp18.000, shuttlecock Rp3.000 per buah, membership bulanan Rp40.000 (4 minggu) "
    "atau Rp45.000 (5 minggu)."
)

FALLBACK_RESPONSES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (
        ("halo", "hai", "hello"),
        "Halo! 👋 Saya DLOB AI, asisten virtual komunitas badminton DLOB. Ada yang bisa saya bantu hari ini? 🏸",
    ),
    (
        ("join", "gabung", "daftar"),
        "Untuk bergabung dengan komunitas DLOB, kak bisa daftar lewat halaman register lalu ikut "
        "latihan rutin setiap Sabtu malam! 🏸",
    ),
    (
        ("jadwal", "latihan", "main"),
        "Latihan rutin DLOB dilakukan setiap Sabtu malam kak! Detail jadwal ada di dashboard member. 📅",
    ),
    (
        ("bayar", "pembayaran", "biaya", "membership"),
        "Biaya sesi Rp18.000 ditambah shuttlecock Rp3.000 per buah. Membership bulanan Rp40.000 "
        "(4 minggu) atau Rp45.000 (5 minggu), jadi cukup bayar shuttlecock saja. 💰",
    ),
    (
        ("admin", "kontak", "bantuan"),
        "Kalau ada pertanyaan lebih lanjut, kak bisa hubungi admin DLOB lewat grup komunitas. 📞",
    ),
)

DEFAULT_RESPONSE = (
    "Terima kasih sudah bertanya! 😊 Saya DLOB AI siap membantu seputar komunitas badminton DLOB: "
    "cara join, jadwal latihan, atau pembayaran. 🏸"
)


def fallback_response(question: str) -> str:
    message = question.lower()
    for keywords, answer in FALLBACK_RESPONSES:
        if any(keyword in message for keyword in keywords):
            return answer
    return DEFAULT_RESPONSE


class ChatAssistant:
    """Text-in/text-out chat backed by Gemini, with a keyword fallback table."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY", "")
        self.model = model or os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def reply(self, question: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_configured():
            return {"response": fallback_response(question), "source": "fallback"}

        try:
            text = self.generate(self._build_prompt(question, context))
        except UpstreamUnavailable as exc:
            logger.warning("Gemini unavailable (%s); using fallback response", exc)
            return {"response": fallback_response(question), "source": "fallback"}
        return {"response": text, "source": "gemini"}

    def generate(self, prompt: str) -> str:
        endpoint = f"{GEMINI_BASE_URL}/{self.model}:generateContent"
        body = {"contents": [{"parts": [{"text": prompt}]}]}

        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(endpoint, params={"key": self.api_key}, json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Gemini request failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamUnavailable("Gemini returned a non-JSON body") from exc

        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamUnavailable("Unexpected payload from Gemini") from exc

        if not isinstance(text, str) or not text.strip():
            raise UpstreamUnavailable("Gemini returned an empty response")
        return text.strip()

    @staticmethod
    def _build_prompt(question: str, context: Optional[Dict[str, Any]]) -> str:
        return (
            f"{SYSTEM_PROMPT}\n\n"
            f"Context: {json.dumps(context or {}, ensure_ascii=False)}\n"
            f"Pertanyaan: {question}"
        )

"""Hint and speech helpers. Stateless; failures never block a quiz."""

import asyncio
import base64
import logging
from typing import Optional

import google.generativeai as genai
import requests

from config import GEMINI_API_KEY, GEMINI_MODEL, SPEECH_API_KEY, SPEECH_API_URL
from .errors import AssistError
from .models import Question
from .question_provider import parse_json_output

logger = logging.getLogger(__name__)

HINT_PROMPT = """You are an expert in blockchain education. A user is taking a quiz and has asked for a hint for the following question.

Question: "{question}"
Possible Answers:
{answers}

Your task is to provide a simple, beginner-friendly explanation of the core concept being tested in this question.

IMPORTANT: Do NOT reveal the correct answer or even hint at which option is correct. Your goal is to teach the underlying concept so the user can answer it themselves. Keep the explanation concise and easy to understand for someone with no prior web3 development knowledge.

Return ONLY a JSON object: {{"explanation": "..."}}
"""


class HintService:

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key or GEMINI_API_KEY
        self.model_name = model_name or GEMINI_MODEL
        self._model = None

    def _generate(self, prompt: str) -> str:
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                model_name=self.model_name,
                generation_config={"response_mime_type": "application/json"},
            )
        return self._model.generate_content(prompt).text or ''

    async def explain_question(self, question: Question) -> str:
        if not self.api_key:
            raise AssistError("Hints are not available right now.")

        answers = "\n".join(f"- {option}" for option in question.options)
        prompt = HINT_PROMPT.format(question=question.prompt, answers=answers)
        try:
            text = await asyncio.to_thread(self._generate, prompt)
            explanation = parse_json_output(text).get('explanation', '')
        except Exception as e:
            logger.error(f"❌ Error explaining question: {e}")
            raise AssistError("Could not get a hint for this question.") from e

        if not explanation:
            raise AssistError("Could not get a hint for this question.")
        return explanation.strip()


class SpeechService:
    """Text-to-speech through the configured speech endpoint"""

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, timeout: float = 30):
        self.api_url = api_url or SPEECH_API_URL
        self.api_key = api_key or SPEECH_API_KEY
        self.timeout = timeout

    def _request(self, text: str):
        headers = {'Authorization': f"Bearer {self.api_key}"} if self.api_key else {}
        return requests.post(self.api_url, json={'text': text}, headers=headers, timeout=self.timeout)

    async def synthesize_speech(self, text: str) -> str:
        """Returns the audio as a data URI"""
        if not text or not text.strip():
            raise AssistError("Nothing to read aloud.")
        if not self.api_url:
            raise AssistError("Speech is not available right now.")

        try:
            response = await asyncio.to_thread(self._request, text)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"❌ Error with text-to-speech: {e}")
            raise AssistError("Could not convert text to speech.") from e

        content_type = response.headers.get('Content-Type', 'audio/wav').split(';')[0]
        if content_type == 'application/json':
            media = response.json().get('media')
            if not media:
                raise AssistError("Could not convert text to speech.")
            return media

        encoded = base64.b64encode(response.content).decode('ascii')
        return f"data:{content_type};base64,{encoded}"

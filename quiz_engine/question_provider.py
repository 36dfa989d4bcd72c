"""
Question Set Provider

Generates multiple-choice questions for a difficulty tier with Google's
Gemini models. Output is validated question by question; a provider that
returns fewer questions than requested is accepted as-is.
"""

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Optional

import google.generativeai as genai

from config import GEMINI_API_KEY, GEMINI_MODEL
from .errors import GenerationError
from .models import DifficultyTier, Question, get_tier, questions_from_payloads

logger = logging.getLogger(__name__)

QUIZ_PROMPT = """You are a quiz generator for a crypto education platform called CryptoQuest.

You will generate {count} quiz questions and answers for developers, related to the topic of "{topic}".
The difficulty level is {difficulty}.

Each question should have 4 possible answers, and you must specify the index of the correct answer.

Ensure that the questions are appropriate for the specified difficulty level. Use your best judgement to create compelling and technically accurate questions.

If the difficulty is Beginner, focus on basic concepts and syntax.
If the difficulty is Intermediate, focus on common patterns and practices.
If the difficulty is Advanced, focus on complex topics, advanced mechanics and optimization.
If the difficulty is Expert, focus on in-depth, niche topics.
If the difficulty is Master, create the ultimate challenge questions.

Return ONLY a JSON array of objects with the following structure, no code fences or extra text:

[{{"question": "The quiz question.", "answers": ["Answer 1", "Answer 2", "Answer 3", "Answer 4"], "correctAnswerIndex": 0}}]
"""


def parse_json_output(text: str) -> Any:
    """Parse model output, tolerating markdown code fences"""
    text = (text or '').strip()
    if text.startswith('```'):
        text = re.sub(r'^```(?:json)?\s*', '', text)
        text = re.sub(r'\s*```$', '', text)
    return json.loads(text)


class QuestionSetProvider:
    """Interface: fetch an ordered list of questions for a tier"""

    async def fetch_questions(self, tier, count: int) -> List[Question]:
        raise NotImplementedError


class GeminiQuestionProvider(QuestionSetProvider):

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key or GEMINI_API_KEY
        self.model_name = model_name or GEMINI_MODEL
        self._model = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_model(self):
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                model_name=self.model_name,
                generation_config={"response_mime_type": "application/json"},
            )
        return self._model

    def _generate(self, prompt: str) -> str:
        response = self._get_model().generate_content(prompt)
        return response.text or ''

    async def fetch_questions(self, tier, count: int) -> List[Question]:
        tier = get_tier(tier)
        if count <= 0:
            raise GenerationError("Question count must be positive")
        if not self.is_configured:
            logger.error("❌ GEMINI_API_KEY not configured - cannot generate questions")
            raise GenerationError("Question generator not configured.")

        prompt = QUIZ_PROMPT.format(count=count, topic=tier.topic, difficulty=tier.name)
        logger.info(f"🧠 Generating {count} {tier.name} questions on '{tier.topic}'")

        try:
            text = await asyncio.to_thread(self._generate, prompt)
            payload = parse_json_output(text)
        except json.JSONDecodeError as e:
            logger.error(f"❌ Generator returned invalid JSON: {e}")
            raise GenerationError("Could not fetch quiz questions. Please try again later.") from e
        except Exception as e:
            logger.error(f"❌ Error generating quiz questions: {e}")
            raise GenerationError("Could not fetch quiz questions. Please try again later.") from e

        if isinstance(payload, dict):
            payload = payload.get('questions', [])
        if not isinstance(payload, list):
            raise GenerationError("AI failed to generate questions.")

        questions = questions_from_payloads(payload[:count])
        if len(questions) < count:
            logger.warning(f"⚠️ Generator returned {len(questions)} of {count} requested questions")
        logger.info(f"📚 Generated {len(questions)} questions for {tier.name}")
        return questions


class StaticQuestionProvider(QuestionSetProvider):
    """Serves questions from an in-memory bank, keyed by tier name"""

    def __init__(self, bank: Dict[str, List[Dict[str, Any]]], shuffle: bool = False):
        self.bank = {key.lower(): list(items) for key, items in bank.items()}
        self.shuffle = shuffle

    async def fetch_questions(self, tier, count: int) -> List[Question]:
        tier: DifficultyTier = get_tier(tier)
        items = list(self.bank.get(tier.key, []))
        if self.shuffle:
            random.shuffle(items)
        if not items:
            logger.warning(f"⚠️ No questions available for {tier.name}")
            raise GenerationError("No questions available. Please try again later.")
        return questions_from_payloads(items[:count])

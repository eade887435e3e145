import logging
from typing import List, Optional, Protocol

from openai import OpenAI, OpenAIError

from quiz_api.core.errors import GenerationFailedError

logger = logging.getLogger(__name__)

QUIZ_SYSTEM = (
    "You are a programming teacher who writes reliable, unambiguous multiple-choice questions. "
    "Always answer with a single JSON object and nothing else."
)

QUIZ_PROMPT = """Create a {language} programming quiz question focused on: {topic}
Difficulty: {difficulty}
{code_instruction}

{context}

Generate a clear, educational question with:
1. One focused question about {language} programming
2. Exactly 4 options (A, B, C, D) - only ONE correct
3. Practical, realistic scenarios relevant to {language}
4. Clear explanation for learning

Use {language}-specific syntax and concepts. Make it challenging but fair for {difficulty} level.

Respond with valid JSON:
{{
    "question": "Your {language} question text",
    "codeSnippet": "{code_snippet}",
    "options": {{
        "A": "Option A text",
        "B": "Option B text",
        "C": "Option C text",
        "D": "Option D text"
    }},
    "correctAnswer": "A, B, C or D",
    "explanation": "Educational explanation about {language}"
}}
"""


class QuestionSource(Protocol):
    def generate_question(
        self, language: str, topic: str, difficulty: str, want_code: bool, context: str = ""
    ) -> str: ...


def build_messages(language: str, topic: str, difficulty: str, want_code: bool, context: str = "") -> List[dict]:
    if want_code:
        code_instruction = f"Include a relevant {language} code snippet"
        code_snippet = "code snippet here"
    else:
        code_instruction = "Make it a conceptual question without code"
        code_snippet = ""

    user = QUIZ_PROMPT.format(
        language=language,
        topic=topic,
        difficulty=difficulty,
        code_instruction=code_instruction,
        code_snippet=code_snippet,
        context=context,
    )
    return [{"role": "system", "content": QUIZ_SYSTEM}, {"role": "user", "content": user}]


class OpenAIQuestionSource:
    """
    Source de questions via l'API OpenAI (réponse JSON brute).
    Sans OPENAI_API_KEY, chaque appel échoue → le générateur bascule sur le secours.
    """

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", timeout_seconds: float = 20.0):
        self.model = model
        self._client: Optional[OpenAI] = None
        if api_key:
            self._client = OpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        else:
            logger.warning("OPENAI_API_KEY not set: quiz will use fallback questions")

    def generate_question(
        self, language: str, topic: str, difficulty: str, want_code: bool, context: str = ""
    ) -> str:
        if self._client is None:
            raise GenerationFailedError("OpenAI client not configured")

        try:
            comp = self._client.chat.completions.create(
                model=self.model,
                temperature=0.7,
                response_format={"type": "json_object"},
                messages=build_messages(language, topic, difficulty, want_code, context),
            )
        except OpenAIError as e:
            raise GenerationFailedError(f"OpenAI error: {e}") from e

        content = comp.choices[0].message.content or ""
        if not content.strip():
            raise GenerationFailedError("Empty completion")
        return content.strip()

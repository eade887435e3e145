import json
import logging
import random
from typing import Dict, Optional

from pydantic import ValidationError

from quiz_api.core.errors import GenerationFailedError
from quiz_api.models.quiz import Difficulty, Question, QuestionDraft, QuizOption
from quiz_api.services.question_source import QuestionSource
from quiz_api.services.retrieval import Retriever
from quiz_api.utils.text_utils import strip_code_fence, truncate

logger = logging.getLogger(__name__)

# langage -> {thème: probabilité de demander un extrait de code}
LANGUAGE_TOPICS: Dict[str, Dict[str, float]] = {
    "python": {
        "functions and decorators": 0.9,
        "list comprehensions": 0.8,
        "classes and inheritance": 0.7,
        "async/await": 0.9,
        "data structures": 0.8,
        "exception handling": 0.6,
        "modules and packages": 0.7,
        "lambda functions": 0.9,
        "generators": 0.8,
        "context managers": 0.9,
    },
    "java": {
        "object-oriented programming": 0.8,
        "collections framework": 0.8,
        "stream API": 0.9,
        "exception handling": 0.7,
        "generics": 0.8,
        "lambda expressions": 0.9,
        "multithreading": 0.8,
        "interfaces and abstract classes": 0.7,
        "design patterns": 0.6,
        "JVM concepts": 0.5,
    },
    "kotlin": {
        "functions and lambdas": 0.9,
        "classes and objects": 0.7,
        "coroutines": 0.9,
        "collections": 0.8,
        "null safety": 0.7,
        "extension functions": 0.9,
        "sealed classes": 0.8,
        "data classes": 0.7,
        "scope functions": 0.9,
        "delegation": 0.8,
    },
    "javascript": {
        "promises and async/await": 0.9,
        "closures": 0.8,
        "prototypes and inheritance": 0.7,
        "event handling": 0.8,
        "array methods": 0.9,
        "destructuring": 0.8,
        "modules": 0.7,
        "arrow functions": 0.9,
        "DOM manipulation": 0.8,
        "error handling": 0.6,
    },
    "typescript": {
        "type annotations": 0.8,
        "interfaces": 0.7,
        "generics": 0.8,
        "decorators": 0.9,
        "union and intersection types": 0.8,
        "modules and namespaces": 0.7,
        "advanced types": 0.8,
        "type guards": 0.9,
        "enums": 0.7,
        "conditional types": 0.8,
    },
    "csharp": {
        "LINQ": 0.9,
        "async/await": 0.9,
        "properties and indexers": 0.7,
        "delegates and events": 0.8,
        "generics": 0.8,
        "nullable reference types": 0.7,
        "pattern matching": 0.8,
        "attributes": 0.7,
        "records": 0.8,
        "dependency injection": 0.6,
    },
    "cpp": {
        "pointers and references": 0.9,
        "templates": 0.8,
        "smart pointers": 0.9,
        "STL containers": 0.8,
        "RAII": 0.7,
        "virtual functions": 0.8,
        "move semantics": 0.9,
        "lambda expressions": 0.8,
        "operator overloading": 0.7,
        "memory management": 0.8,
    },
    "rust": {
        "ownership and borrowing": 0.9,
        "pattern matching": 0.8,
        "error handling": 0.8,
        "traits": 0.8,
        "lifetimes": 0.9,
        "iterators": 0.8,
        "async/await": 0.9,
        "macros": 0.8,
        "cargo and modules": 0.6,
        "unsafe code": 0.7,
    },
    "go": {
        "goroutines": 0.9,
        "channels": 0.9,
        "interfaces": 0.8,
        "error handling": 0.7,
        "slices and maps": 0.8,
        "pointers": 0.8,
        "structs and methods": 0.7,
        "packages": 0.6,
        "defer statement": 0.8,
        "context package": 0.8,
    },
    "swift": {
        "optionals": 0.8,
        "closures": 0.9,
        "protocols": 0.8,
        "generics": 0.8,
        "property wrappers": 0.9,
        "async/await": 0.9,
        "error handling": 0.7,
        "extensions": 0.8,
        "enums with associated values": 0.8,
        "memory management": 0.7,
    },
}

DISPLAY_NAMES = {
    "kotlin": "Kotlin",
    "java": "Java",
    "python": "Python",
    "javascript": "JavaScript",
    "typescript": "TypeScript",
    "csharp": "C#",
    "cpp": "C++",
    "rust": "Rust",
    "go": "Go",
    "swift": "Swift",
}

SUPPORTED_LANGUAGES = list(LANGUAGE_TOPICS)


def display_name(language: Optional[str]) -> str:
    return DISPLAY_NAMES.get((language or "").lower(), "Programming")


def normalize_language(language: Optional[str], default: str = "python") -> str:
    normalized = (language or "").strip().lower()
    if normalized in LANGUAGE_TOPICS:
        return normalized
    return default if default in LANGUAGE_TOPICS else "python"


def _options(*texts: str) -> list:
    return [QuizOption(letter=letter, text=text) for letter, text in zip("ABCD", texts)]


def fallback_question(language: str, question_number: int) -> Question:
    """
    Question de secours figée, toujours conforme au schéma.
    """
    language = (language or "").lower()
    if language == "python":
        return Question(
            questionNumber=question_number,
            question="Which keyword is used to define a function in Python?",
            options=_options("function", "def", "func", "define"),
            correctAnswer="B",
            explanation="In Python, 'def' is the keyword used to define functions.",
        )
    if language == "java":
        return Question(
            questionNumber=question_number,
            question="Which access modifier makes a method accessible from anywhere?",
            options=_options("private", "protected", "public", "default"),
            correctAnswer="C",
            explanation="The 'public' access modifier makes methods accessible from any class.",
        )

    name = display_name(language)
    return Question(
        questionNumber=question_number,
        question=f"What is {name} primarily used for?",
        options=_options("Web development", "Mobile development", "System programming", "General programming"),
        correctAnswer="D",
        explanation=f"{name} is a versatile programming language used for various applications.",
    )


def parse_question(raw: str, question_number: int) -> Question:
    """
    Décodage strict de la réponse du modèle (bloc ``` toléré autour du JSON).
    """
    try:
        data = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as e:
        raise GenerationFailedError(f"Invalid JSON: {e}") from e

    try:
        return QuestionDraft.model_validate(data).to_question(question_number)
    except ValidationError as e:
        raise GenerationFailedError(f"Schema mismatch: {e.error_count()} error(s)") from e


class QuestionGenerator:
    def __init__(
        self,
        source: QuestionSource,
        retriever: Optional[Retriever] = None,
        rng: Optional[random.Random] = None,
        top_k: int = 2,
        threshold: float = 0.5,
        context_max_chars: int = 800,
    ) -> None:
        self.source = source
        self.retriever = retriever
        self.rng = rng or random.Random()
        self.top_k = top_k
        self.threshold = threshold
        self.context_max_chars = context_max_chars

    def generate(self, language: str, difficulty: Difficulty, question_number: int) -> Question:
        """
        Ne lève jamais : toute erreur amont donne la question de secours.
        """
        topics = LANGUAGE_TOPICS.get(language)
        if topics is None:
            logger.warning("No topics for language %s, using python topics", language)
            topics = LANGUAGE_TOPICS["python"]

        topic = self.rng.choice(sorted(topics))
        include_code = self.rng.random() < topics[topic]
        logger.debug(
            "Generating %s question %s, topic=%s, code=%s", language, question_number, topic, include_code
        )

        try:
            context = self._topic_context(topic, language)
            raw = self.source.generate_question(
                display_name(language), topic, difficulty.value, include_code, context
            )
            return parse_question(raw, question_number)
        except Exception as e:
            # Contrat : le quiz ne doit jamais bloquer sur la génération
            logger.warning("Question generation failed (%s, q%s): %s", language, question_number, e)
            return fallback_question(language, question_number)

    def _topic_context(self, topic: str, language: str) -> str:
        if self.retriever is None:
            return ""
        try:
            chunks = self.retriever.retrieve(f"{topic} {language} programming", self.top_k, self.threshold)
        except Exception as e:
            logger.warning("Could not get context for topic %s in %s: %s", topic, language, e)
            return ""

        if not chunks:
            return ""
        return "Reference material:\n" + truncate(chunks[0].text, self.context_max_chars)

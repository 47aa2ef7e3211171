"""
LLM Module
----------
Purpose: Generate grounded, structured answers from retrieved context with Groq
"""
from dataclasses import dataclass, field
import logging
import os
from typing import List, Optional

from groq import Groq, APIError, APITimeoutError
from pydantic import BaseModel, ValidationError

from .errors import AnswerGenerationFailed, GenerationTimeout
from .models import Alert
from .vector_store import RetrievalResult

logger = logging.getLogger(__name__)

GROUNDING_RULES = """You are a formal and highly accurate assistant for an internal document library.
Your only source of facts is the document context supplied with each question.

RULES:
1. STRICT CONTEXT: Use ONLY the supplied context. Never use outside or general world knowledge to fill gaps.
2. ABSENCE: If the context does not answer the question, say explicitly that the information was not found in the indexed documents. Do not guess or invent.
3. ATTRIBUTION: When the context contains several sources, attribute each statement to its source file and page, e.g. (HR_Policy.pdf, page 2).
4. ALERTS: If sources contradict each other, or the context holds similar information that could be confused with the answer (e.g. the same policy for another department), add an alert.
5. LANGUAGE: {language_rule}

OUTPUT FORMAT:
Return ONLY a JSON object:
{{
  "answer": "Your answer with in-text source references",
  "alerts": [
    {{"title": "Short title", "content": "What differs or conflicts and why it matters", "source": "File name(s)"}}
  ]
}}
Use an empty list when there are no alerts."""

CONTRADICTION_RULES = """You are an integrity auditor. Find direct factual contradictions between document snippets from different files.

RULES:
1. Only report TRUE contradictions (e.g. File A says 'Mon-Fri' but File B says 'Sun-Thu').
2. Ignore wording differences that mean the same thing.
3. Focus on dates, numbers, policy rules, and names or roles of people.

Return ONLY a JSON object:
{"contradictions": [{"topic": "...", "source_a": "File A", "source_b": "File B", "explanation": "...", "severity": "high or medium"}]}"""


class AlertPayload(BaseModel):
    title: str
    content: str
    source: str = ""


class AnswerPayload(BaseModel):
    answer: str
    alerts: List[AlertPayload] = []


class ContradictionPayload(BaseModel):
    topic: str
    source_a: str
    source_b: str
    explanation: str
    severity: str = "medium"


class ContradictionReport(BaseModel):
    contradictions: List[ContradictionPayload] = []


@dataclass
class GeneratedAnswer:
    """Parsed generator output."""
    answer: str
    alerts: List[Alert] = field(default_factory=list)


def language_rule(response_language: Optional[str]) -> str:
    if response_language:
        return f"Always answer in {response_language}."
    return "Answer in the same language as the question."


def parse_answer(raw: Optional[str]) -> GeneratedAnswer:
    """
    Validate the generator's JSON reply.

    Raises:
        AnswerGenerationFailed: Not JSON, wrong shape, or a blank answer
    """
    if not raw or not raw.strip():
        raise AnswerGenerationFailed("Generator returned an empty response")
    try:
        payload = AnswerPayload.model_validate_json(raw)
    except ValidationError as e:
        raise AnswerGenerationFailed(f"Unparseable generator response: {e.errors()[0]['msg']}")
    if not payload.answer.strip():
        raise AnswerGenerationFailed("Generator returned a blank answer")
    return GeneratedAnswer(
        answer=payload.answer.strip(),
        alerts=[Alert(title=a.title, content=a.content, source=a.source) for a in payload.alerts],
    )


class GroqLLMClient:
    """
    Client for answering questions from retrieved context with Groq
    Requires: Groq API key
    Model: llama-3.1-8b-instant -> check available models using client.models.list()
    """
    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "llama-3.1-8b-instant",
        max_tokens: int = 1024,
        temperature: float = 0.2,
        timeout: float = 20,
        response_language: Optional[str] = None,
    ):
        """
        Initialize Groq LLM client
        Args:
            api_key (str): Groq API key (falls back to GROQ_API_KEY)
            model_name (str): Groq model name
            max_tokens (int): Maximum number of tokens to generate
            temperature (float): Low values keep answers close to the context
            timeout (float): Default per-request timeout in seconds
            response_language (str): Force a language; None answers in the question's language
        """
        self.api_key = api_key or os.getenv("GROQ_API_KEY")

        if not self.api_key:
            raise ValueError("GROQ_API_KEY not found in environment variables")

        self.client = Groq(api_key=self.api_key)
        self.model_name = model_name
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.response_language = response_language

        logger.info(f"Groq LLM client initialized with model: {self.model_name}")

    def _build_messages(self, query: str, context_text: str) -> List[dict]:
        system = GROUNDING_RULES.format(language_rule=language_rule(self.response_language))
        user = f"Context:\n{context_text}\n\nQuestion: {query}"
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def _complete_json(self, messages: List[dict], timeout: Optional[float]) -> Optional[str]:
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout=timeout or self.timeout,
            )
        except APITimeoutError:
            raise GenerationTimeout(f"Groq request timed out after {timeout or self.timeout}s")
        except APIError as e:
            logger.error(f"Groq query failed: {e}")
            raise AnswerGenerationFailed(f"LLM query failed: {e}")
        return response.choices[0].message.content

    def generate(self, query: str, context_text: str, timeout: Optional[float] = None) -> GeneratedAnswer:
        """
        Answer a question strictly from the supplied context.

        Args:
            query: User's question
            context_text: Assembled context (source headers + chunk text)
            timeout: Per-call timeout, defaults to the client timeout

        Returns:
            GeneratedAnswer with answer text and alerts

        Raises:
            GenerationTimeout: Groq did not answer in time
            AnswerGenerationFailed: API error or malformed response
        """
        logger.debug(f"Querying Groq with {len(context_text)} chars context")
        raw = self._complete_json(self._build_messages(query, context_text), timeout)
        result = parse_answer(raw)
        logger.debug(f"Groq answered ({len(result.answer)} chars, {len(result.alerts)} alerts)")
        return result

    def detect_contradictions(
        self,
        matches: List[RetrievalResult],
        timeout: Optional[float] = None,
    ) -> List[Alert]:
        """
        Ask the model for factual contradictions between snippets of different files.

        Advisory only: on any failure the problem is logged and no alerts are returned.
        """
        if len({m.metadata.file for m in matches}) < 2:
            return []

        snippets = "\n\n---\n\n".join(
            f"[FILE: {m.metadata.file}, Page: {m.metadata.page}]\n{m.text}" for m in matches
        )
        messages = [
            {"role": "system", "content": CONTRADICTION_RULES},
            {"role": "user", "content": f"Analyze these snippets for contradictions:\n\n{snippets}"},
        ]

        try:
            raw = self._complete_json(messages, timeout)
            report = ContradictionReport.model_validate_json(raw or "{}")
        except (AnswerGenerationFailed, ValidationError) as e:
            logger.warning(f"Contradiction detection failed: {e}")
            return []

        return [
            Alert(
                title=f"Conflicting sources: {c.topic}",
                content=c.explanation,
                source=f"{c.source_a} / {c.source_b}",
            )
            for c in report.contradictions
        ]

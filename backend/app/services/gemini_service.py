"""
Gemini service for addenda analysis.

Wraps the generative calls the conforming workflow needs:
- verify_consistency: do the uploaded documents belong to one project?
- propose_changes: conforming plan (change instructions + Q&A) for addenda
- generate_triage_report / generate_executive_summary / generate_cost_impact

Base documents are summarised into text manifests with PyMuPDF; addenda are
sent inline as PDFs. Transient API errors are retried with tenacity, all
other failures surface as LLMServiceError with a user-readable message.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import google.generativeai as genai
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from app.config import settings
from conform_engine.models import ChangeInstruction, ParsedPlan, parse_ai_plan
from conform_engine.pdf_engine import PyMuPDFEngine

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================


class LLMServiceError(Exception):
    """A Gemini call failed; the message is safe to show to the user."""


# Error patterns that indicate transient/retryable errors
RETRYABLE_ERROR_PATTERNS = (
    "503",
    "service unavailable",
    "connection reset",
    "429",
    "resource exhausted",
    "rate limit",
    "504",
    "deadline exceeded",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "unavailable",
    "overloaded",
)

# Error patterns that indicate non-retryable errors (fail fast)
NON_RETRYABLE_ERROR_PATTERNS = (
    "401",
    "unauthorized",
    "403",
    "forbidden",
    "400",
    "bad request",
    "invalid argument",
    "permission denied",
    "api key not valid",
)

QUOTA_MESSAGE = "You exceeded your current quota. Please check your plan and billing details."


def is_retryable_error(error: BaseException) -> bool:
    """
    Check if an error is transient and worth retrying.

    Unknown errors are treated as non-retryable so bugs are not masked.
    """
    error_str = str(error).lower()
    if any(pattern in error_str for pattern in NON_RETRYABLE_ERROR_PATTERNS):
        return False
    return any(pattern in error_str for pattern in RETRYABLE_ERROR_PATTERNS)


def api_error_message(error: BaseException) -> str:
    """User-facing message for a provider error."""
    message = str(error)
    if not message:
        return "An unknown API error occurred."

    try:
        parsed = json.loads(message)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), dict) and parsed["error"].get("message"):
        return parsed["error"]["message"]

    if "quota" in message or "RESOURCE_EXHAUSTED" in message:
        return QUOTA_MESSAGE
    return message


def parse_json_response(text: str) -> Any:
    """Parse a JSON response, tolerating a surrounding markdown code fence."""
    cleaned = text.strip()
    fence = re.match(r"^```(?:json)?\s*(.*?)\s*```$", cleaned, re.DOTALL)
    if fence:
        cleaned = fence.group(1)
    return json.loads(cleaned)


# =============================================================================
# DOCUMENT MANIFESTS
# =============================================================================


@dataclass
class SourceFile:
    """An uploaded PDF passed to the model."""
    filename: str
    data: bytes


def guess_document_label(filename: str) -> str:
    name = filename.lower()
    if "spec" in name:
        return "specification"
    if "drawing" in name or "sheet" in name:
        return "drawing set"
    if "addendum" in name:
        return "addendum"
    return "document"


async def build_manifest(
    source: Optional[SourceFile],
    label: str,
    chars_per_page: int,
    max_pages: Optional[int] = None,
    engine: Optional[PyMuPDFEngine] = None,
) -> str:
    """
    Text manifest of a PDF: the first ``chars_per_page`` characters of each
    page (of the first ``max_pages`` pages when given). Pages that fail to
    extract are recorded as such rather than aborting the manifest.
    """
    if source is None:
        return f"No {label} document provided."

    engine = engine or PyMuPDFEngine()
    handle = await engine.load_document(source.data, name=source.filename)
    try:
        page_count = handle.page_count
        pages = page_count if max_pages is None else min(page_count, max_pages)

        if max_pages is None:
            parts = [
                f'The {label} document "{source.filename}" has {page_count} pages. '
                f"A text manifest of every page follows:"
            ]
        else:
            parts = [f'--- Document: "{source.filename}" ({label}, {page_count} pages) ---']

        for page_number in range(1, pages + 1):
            try:
                page = await engine.get_page(handle, page_number)
                runs = await engine.get_text_runs(page)
                text = " ".join(run.text for run in runs)[:chars_per_page].strip()
            except Exception as e:
                logger.warning(f"Could not process page {page_number} of {source.filename}: {e}")
                text = "[Error processing page content]"

            if max_pages is None:
                parts.append(f"--- Page {page_number} ---\n{text}")
            else:
                parts.append(f"Page {page_number} Snippet:\n{text}")

        return "\n\n".join(parts)
    finally:
        await engine.close_document(handle)


# =============================================================================
# PROMPTS
# =============================================================================


CONSISTENCY_PROMPT = """You are an expert construction project manager. Perform a HIGH-LEVEL consistency check on the document manifests below.
The core question is: **{question}**

Rules:
1. Ignore minor version typos: project numbers that differ by one or two digits are consistent when the project name, architect and site match.
2. Prioritise the project name: a matching project name means consistent even if internal numbering differs.
3. Err on the side of true: only answer false for OBVIOUSLY different projects.

DOCUMENT MANIFESTS:
{manifests}

Return a single JSON object: {{"is_consistent": <boolean>, "reasoning": "<one sentence>"}}
"""

PLAN_PROMPT = """You are an expert construction project manager. Identify every change instruction in the addenda PDFs that follow and return a JSON conforming plan.

DOCUMENT BLUEPRINT (FULL TEXT MANIFESTS):
- Specifications: {specs_manifest}
- Drawings: {drawings_manifest}

INSTRUCTIONS:
1. Identify all PAGE_REPLACE, PAGE_ADD, PAGE_DELETE, TEXT_REPLACE, TEXT_ADD and TEXT_DELETE instructions.
2. For PAGE_REPLACE, find the most logical matching page in the blueprint (sheet number/title).
3. Extract any Questions & Answers into questions_and_answers.

Return JSON of this shape:
{{
  "change_instructions": [{{
    "change_type": "<one of the types above>",
    "human_readable_description": "...",
    "source_addendum_file": "...",
    "search_target": {{"document_type": "drawings|specs", "semantic_search_query": "...", "location_hint": "..."}},
    "data_payload": {{"text_to_find": "...", "replacement_text": "...", "source_page_in_addendum": 0,
                     "original_page_number_to_affect": 0, "addendum_source_page_number": 0,
                     "insert_after_original_page_number": 0}},
    "discipline": "...",
    "spec_section": "..."
  }}],
  "questions_and_answers": [{{"question": "...", "answer": "...", "source_addendum_file": "...",
                              "discipline": "...", "spec_section": "..."}}]
}}
"""

TRIAGE_PROMPT = """You are an expert construction estimator. Perform a triage analysis of the addenda PDFs that follow.
Return JSON: {"report": {"summary": "...", "bid_date_change": {"is_changed": <boolean>, "details": "..."},
"mentioned_spec_sections": ["..."], "mentioned_drawings": ["..."],
"discipline_impact": [{"discipline": "...", "mentions": <integer>, "description": "..."}],
"suggested_checklist": ["..."], "high_impact_changes_count": <integer>,
"has_drawing_changes": <boolean>, "has_spec_changes": <boolean>,
"questions_and_answers": [{"question": "...", "answer": "...", "impact_summary": "..."}]}}
"""

SUMMARY_PROMPT = "Concisely summarize these construction project changes in 3-5 bullets:\n{descriptions}"

COST_PROMPT = """Analyze the cost impact of these construction changes. Group by HIGH, MEDIUM, LOW impact levels.
{changes}

Return JSON: {{"overall_impact_summary": "...", "cost_impact_items": [{{"change_id": <integer>, "cost_impact": "HIGH|MEDIUM|LOW", "rationale": "..."}}]}}
"""


# =============================================================================
# SERVICE
# =============================================================================


class GeminiService:
    """Gemini client for addenda analysis."""

    def __init__(self, engine: Optional[PyMuPDFEngine] = None):
        genai.configure(api_key=settings.gemini_api_key)
        self._model = None
        self.engine = engine or PyMuPDFEngine()

    @property
    def model(self):
        """Get or create Gemini model instance."""
        if self._model is None:
            self._model = genai.GenerativeModel(settings.gemini_model)
        return self._model

    @retry(
        stop=stop_after_attempt(settings.api_retry_max_attempts),
        wait=wait_exponential(multiplier=1, min=settings.api_retry_base_delay, max=settings.api_retry_max_delay),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=lambda retry_state: logger.warning(
            f"Retrying Gemini call (attempt {retry_state.attempt_number}/"
            f"{settings.api_retry_max_attempts}): {retry_state.outcome.exception()}"
        ),
        reraise=True,
    )
    async def _call_gemini(self, contents: List[Any], json_response: bool = True) -> str:
        """Run one generate_content call in a worker thread and return its text."""
        generation_config = {"max_output_tokens": settings.gemini_max_output_tokens}
        if json_response:
            generation_config["response_mime_type"] = "application/json"

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.model.generate_content,
                    contents,
                    generation_config=generation_config,
                ),
                timeout=settings.gemini_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise RuntimeError(f"Gemini API call timed out after {settings.gemini_timeout_seconds}s")

        if not response or not response.text:
            raise RuntimeError("No content generated by Gemini")
        return response.text

    async def _generate_json(self, contents: List[Any], action: str) -> Any:
        try:
            text = await self._call_gemini(contents)
            return parse_json_response(text)
        except Exception as e:
            logger.error(f"Error trying to {action}: {e}")
            raise LLMServiceError(f"Failed to {action}: {api_error_message(e)}") from e

    @staticmethod
    def _addenda_parts(addenda: Sequence[SourceFile]) -> List[Any]:
        parts: List[Any] = []
        for source in addenda:
            parts.append(f"Addendum file: {source.filename}")
            parts.append({"mime_type": "application/pdf", "data": source.data})
        return parts

    async def verify_consistency(self, files: Sequence[Optional[SourceFile]], question: str) -> Dict[str, Any]:
        """
        Ask whether the documents belong to the same project.

        Never raises: fewer than two files, or any failure, yields
        ``is_consistent=True`` with an explanation.
        """
        valid = [f for f in files if f is not None]
        if len(valid) < 2:
            return {"is_consistent": True, "reasoning": "Not enough documents to perform a consistency check."}

        try:
            manifests = [
                await build_manifest(f, guess_document_label(f.filename), 500, max_pages=3, engine=self.engine)
                for f in valid
            ]
            prompt = CONSISTENCY_PROMPT.format(question=question, manifests="\n\n---\n\n".join(manifests))
            result = parse_json_response(await self._call_gemini([prompt]))
            return {
                "is_consistent": bool(result.get("is_consistent", True)),
                "reasoning": str(result.get("reasoning", "")),
            }
        except Exception as e:
            logger.error(f"Error verifying document consistency: {e}")
            return {"is_consistent": True, "reasoning": "Skipping consistency check due to technical error."}

    async def propose_changes(
        self,
        addenda: Sequence[SourceFile],
        base_drawings: Optional[SourceFile],
        base_specs: Optional[SourceFile],
        start_id: int = 0,
    ) -> ParsedPlan:
        """
        Generate the conforming plan for ``addenda`` and parse it.

        Raises:
            LLMServiceError: the model call or its JSON failed
        """
        specs_manifest = await build_manifest(base_specs, "specifications", 300, engine=self.engine)
        drawings_manifest = await build_manifest(base_drawings, "drawings", 300, engine=self.engine)

        prompt = PLAN_PROMPT.format(specs_manifest=specs_manifest, drawings_manifest=drawings_manifest)
        raw_plan = await self._generate_json([prompt, *self._addenda_parts(addenda)], "generate conforming plan")
        if not isinstance(raw_plan, dict):
            raise LLMServiceError("Failed to generate conforming plan: response was not a JSON object")

        plan = parse_ai_plan(raw_plan, start_id)
        logger.info(
            f"Conforming plan: {len(plan.change_instructions)} changes, "
            f"{len(plan.questions_and_answers)} Q&A items, {len(plan.quarantined)} quarantined"
        )
        for item in plan.quarantined:
            logger.warning(f"Quarantined instruction: {item.reason}")
        return plan

    async def generate_triage_report(self, addenda: Sequence[SourceFile]) -> Dict[str, Any]:
        return await self._generate_json([TRIAGE_PROMPT, *self._addenda_parts(addenda)], "generate triage report")

    async def generate_executive_summary(self, change_log: Sequence[ChangeInstruction]) -> str:
        """Short bullet summary of the approved changes."""
        if not change_log:
            return "No changes identified."

        descriptions = "\n".join(f"- {c.description}" for c in change_log if c.is_approved)
        try:
            return await self._call_gemini([SUMMARY_PROMPT.format(descriptions=descriptions)], json_response=False)
        except Exception as e:
            logger.error(f"Error generating executive summary: {e}")
            raise LLMServiceError(f"Failed to generate executive summary: {api_error_message(e)}") from e

    async def generate_cost_impact(self, approved_changes: Sequence[ChangeInstruction]) -> Dict[str, Any]:
        if not approved_changes:
            raise LLMServiceError("Failed to generate cost impact analysis: No approved changes to analyze.")

        changes = json.dumps(
            [{"id": c.id, "description": c.description, "type": c.change_type.value} for c in approved_changes],
            indent=2,
        )
        return await self._generate_json([COST_PROMPT.format(changes=changes)], "generate cost impact analysis")

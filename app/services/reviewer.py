"""
Reviewer adapter — the workflow engine's only door to the LLM.

Three calls, each wrapping the LLM gateway:
    review(deliverable)            → ReviewVerdict (CEO agent sign-off)
    generate(deliverable, ...)     → {content, citations, screenshots}
    summarize(phase, context)      → executive summary text

Every failure (provider error, timeout, unparseable verdict) is raised as
DependencyError. A failed review is never treated as an approval.

Usage:
    from app.services.reviewer import get_reviewer
    verdict = get_reviewer().review(deliverable)
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass

from flask import current_app

from app.ai.gateway import LLMGateway
from app.ai.prompt_registry import PromptRegistry
from app.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_THRESHOLD = 7.0


@dataclass
class ReviewVerdict:
    """Outcome of an automated review."""

    approved: bool
    quality_score: float
    feedback: str

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "quality_score": self.quality_score,
            "feedback": self.feedback,
        }


# ── Response parsing ─────────────────────────────────────────────────────────


def _strip_fences(content: str) -> str:
    cleaned = content.strip()
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def _extract_json_object(content: str) -> dict | None:
    """Return the first JSON object found in an LLM reply, or None."""
    cleaned = _strip_fences(content)
    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass
    match = re.search(r"\{[\s\S]*\}", cleaned)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class ReviewerAdapter:
    """
    LLM-backed reviewer, generator and summariser.

    Args:
        gateway:         LLMGateway instance (created lazily when None).
        prompt_registry: PromptRegistry instance (created lazily when None).
        threshold:       Minimum quality score for an approving verdict.
        model:           Chat model passed to the gateway.
    """

    def __init__(self, gateway=None, prompt_registry=None,
                 threshold: float = DEFAULT_APPROVAL_THRESHOLD, model: str | None = None):
        self.gateway = gateway or LLMGateway(default_model=model)
        self.prompt_registry = prompt_registry or PromptRegistry()
        self.threshold = threshold
        self.model = model

    # ── Review ───────────────────────────────────────────────────────────

    def review(self, deliverable) -> ReviewVerdict:
        """Ask the CEO agent for a verdict on the deliverable's current content."""
        messages = self.prompt_registry.render(
            "deliverable_review",
            deliverable_type=deliverable.deliverable_type,
            name=deliverable.name,
            description=deliverable.description or "No description provided",
            content=json.dumps(deliverable.generated_content, indent=2, default=str),
            threshold=self._format_threshold(),
        )
        reply = self._chat(messages, purpose="deliverable_review")

        data = _extract_json_object(reply)
        if data is None or "quality_score" not in data:
            raise DependencyError("reviewer", "unparseable review verdict")

        try:
            score = float(data["quality_score"])
        except (TypeError, ValueError):
            raise DependencyError("reviewer", f"invalid quality_score {data['quality_score']!r}")

        verdict = ReviewVerdict(
            approved=data.get("approved") is True and score >= self.threshold,
            quality_score=score,
            feedback=str(data.get("feedback") or "Review completed"),
        )
        logger.info(
            "Review verdict",
            extra={"deliverable_id": deliverable.id, "approved": verdict.approved,
                   "quality_score": verdict.quality_score},
        )
        return verdict

    # ── Generation ───────────────────────────────────────────────────────

    def generate(self, deliverable, feedback: str | None = None, *,
                 timeout: float | None = None) -> dict:
        """Produce content for a deliverable.

        Returns:
            dict: {content, citations, screenshots}. Replies that are not
                  JSON come back as {"raw_content": text}.

        Raises:
            DependencyError: provider failure or timeout.
        """
        project = deliverable.phase.project
        feedback_block = ""
        if feedback:
            feedback_block = (
                "\nIMPORTANT - FEEDBACK FOR REVISION:\n"
                f"{feedback}\n"
                "Regenerate the deliverable addressing every point above."
            )
        messages = self.prompt_registry.render(
            "deliverable_generate",
            deliverable_type=deliverable.deliverable_type,
            name=deliverable.name,
            description=deliverable.description or "",
            project_name=project.name,
            industry=project.industry or "General",
            project_description=project.description or "A new business venture",
            feedback_block=feedback_block,
        )

        if timeout:
            reply = self._chat_with_timeout(messages, timeout, purpose="deliverable_generate")
        else:
            reply = self._chat(messages, purpose="deliverable_generate")

        data = _extract_json_object(reply)
        if data is None:
            return {"content": {"raw_content": reply}, "citations": [], "screenshots": []}

        citations = data.pop("citations", []) if isinstance(data.get("citations"), list) else []
        screenshots = data.pop("screenshots", []) if isinstance(data.get("screenshots"), list) else []
        return {"content": data, "citations": citations, "screenshots": screenshots}

    # ── Summary ──────────────────────────────────────────────────────────

    def summarize(self, phase, context: dict) -> str:
        """Executive summary for a completed phase."""
        work_items = "\n".join(
            f"- {item['name']} ({item['status']}, v{item['version']})"
            for item in context.get("agent_work_summaries", [])
        ) or "- (no deliverables)"
        messages = self.prompt_registry.render(
            "phase_summary",
            phase_number=phase.phase_number,
            phase_name=phase.name,
            project_name=phase.project.name,
            work_items=work_items,
        )
        reply = self._chat(messages, purpose="phase_summary").strip()
        if not reply:
            raise DependencyError("reviewer", "empty summary")
        return reply

    # ── Internals ────────────────────────────────────────────────────────

    def _format_threshold(self) -> str:
        return f"{self.threshold:g}"

    def _chat(self, messages: list, *, purpose: str, **kwargs) -> str:
        try:
            result = self.gateway.chat(messages, model=self.model, purpose=purpose, **kwargs)
        except Exception as e:
            logger.warning("LLM call failed purpose=%s: %s", purpose, e)
            raise DependencyError("reviewer", str(e)) from e
        return result.get("content") or ""

    def _chat_with_timeout(self, messages: list, timeout: float, *, purpose: str) -> str:
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._chat, messages, purpose=purpose, timeout=timeout, max_retries=1)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError as e:
            logger.warning("LLM call timed out purpose=%s after %ss", purpose, timeout)
            raise DependencyError("reviewer", f"timed out after {timeout}s") from e
        finally:
            # do not block on a call that is still running
            executor.shutdown(wait=False)


def get_reviewer() -> ReviewerAdapter:
    """Build a ReviewerAdapter from the current app configuration."""
    return ReviewerAdapter(
        prompt_registry=PromptRegistry(current_app.config.get("PROMPT_OVERRIDES_DIR")),
        threshold=float(current_app.config.get("REVIEW_APPROVAL_THRESHOLD", DEFAULT_APPROVAL_THRESHOLD)),
        model=current_app.config.get("LLM_DEFAULT_CHAT_MODEL"),
    )

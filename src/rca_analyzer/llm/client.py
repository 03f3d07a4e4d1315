import logging
from typing import List, Dict, Any, Optional

import httpx

from ..config import settings
from ..search.models import ScoredChunk

logger = logging.getLogger("rca.llm")

NO_RESULTS_MESSAGE = "No similar historical incidents found."

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert SRE analyzing incident reports. Provide concise, "
    "accurate analysis based on historical data."
)

SYNTHESIS_SYSTEM_PROMPT = "You are an expert SRE. Analyze root causes from historical incidents."


class LLMClient:
    """
    Summary generator over ranked search results (OpenAI chat completions).

    Generation failures are logged and reported as a fixed message; callers
    always get text back.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.llm_model
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.timeout = timeout or settings.llm_timeout
        self._transport = transport

    async def summarize(self, query: str, results: List[ScoredChunk]) -> str:
        """
        Suggest a root cause for `query` from the ranked historical results.
        """
        if not results:
            return NO_RESULTS_MESSAGE

        prompt = _build_summary_prompt(query, _build_context(results))
        try:
            return await self._complete(SUMMARY_SYSTEM_PROMPT, prompt)
        except (httpx.HTTPError, KeyError, IndexError, ValueError):
            logger.exception("Error generating summary")
            return "Error generating summary. Please try again."

    async def synthesize_root_cause(self, results: List[ScoredChunk]) -> str:
        """
        Condense the root causes of the results into one suggestion.
        """
        if not results:
            return NO_RESULTS_MESSAGE

        context = "\n".join(
            f"RCA: {r.title}\nRoot Cause: {r.rca.root_cause if r.rca else ''}\n"
            for r in results
        )
        prompt = (
            "Based on the following historical Root Cause Analysis documents, suggest "
            "the most likely root cause for a similar incident.\n\n"
            f"Historical RCAs:\n{context}\n\n"
            "Provide a concise root cause analysis. If no clear pattern emerges, state: "
            f'"{NO_RESULTS_MESSAGE}"'
        )
        try:
            return await self._complete(SYNTHESIS_SYSTEM_PROMPT, prompt)
        except (httpx.HTTPError, KeyError, IndexError, ValueError):
            logger.exception("Error synthesizing root cause")
            return "Error synthesizing root cause. Please try again."

    async def _complete(self, system_prompt: str, prompt: str) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                "https://api.openai.com/v1/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        resp.raise_for_status()
        data = resp.json()
        return data["choices"][0]["message"]["content"]


def _build_context(results: List[ScoredChunk]) -> str:
    blocks = []
    for r in results:
        rca = r.rca
        blocks.append(
            f"- RCA: {r.title} (Similarity: {r.combined_score:.2f})\n"
            f"  Symptoms: {rca.symptoms if rca else ''}\n"
            f"  Root Cause: {rca.root_cause if rca else ''}\n"
            f"  Resolution: {rca.resolution if rca else ''}\n"
            f"  Link: {r.url}\n"
        )
    return "\n".join(blocks)


def _build_summary_prompt(query: str, context: str) -> str:
    return (
        "You are an expert SRE analyzing incident reports. Based on the following "
        "historical Root Cause Analysis documents, suggest a potential root cause for "
        "the current issue.\n\n"
        f"Current Issue:\n{query}\n\n"
        f"Historical RCAs:\n{context}\n\n"
        "Instructions:\n"
        "1. Analyze the symptoms and root causes from historical RCAs\n"
        "2. Identify patterns and similarities\n"
        "3. Suggest the most likely root cause\n"
        f'4. If no relevant historical data exists, state: "{NO_RESULTS_MESSAGE}"\n'
        "5. Always cite the source RCA documents\n\n"
        "Format your response as:\n"
        "- Suggested Root Cause: [your analysis]\n"
        "- Confidence: [High/Medium/Low]\n"
        "- Similar Historical Incidents: [list with links]\n"
    )

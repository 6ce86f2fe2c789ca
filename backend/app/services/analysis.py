"""AI-written analysis of a test's results (OpenAI)."""
import json
import openai
from typing import Dict, List
import time
import structlog

from app.models.test import ABTest
from app.services.optimizer import VariantStats, latest_snapshots, variant_stats
from app.services.significance import calculate_significance
from app.services.storage import ABTestStorage

logger = structlog.get_logger()


class AnalysisError(Exception):
    """Raised when the LLM provider fails or returns unusable output."""
    pass


class AnalysisService:
    """Builds a results prompt for a test and asks the LLM for a summary."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model

    @staticmethod
    def collect_stats(storage: ABTestStorage, test: ABTest, time_range: str = "1w") -> List[VariantStats]:
        """Latest numbers for every variant of a test, control first."""
        latest = latest_snapshots(storage.get_analytics(test.id, time_range))
        return [variant_stats(variant, latest) for variant in test.variants]

    def build_prompt(self, test: ABTest, stats: List[VariantStats]) -> str:
        """Render the analysis prompt."""
        duration_days = (test.end_time - test.start_time).days
        control = stats[0]

        lines = []
        for index, s in enumerate(stats, start=1):
            significance = calculate_significance(
                control.conversions, control.views, s.conversions, s.views
            )
            lines.append(
                f"Variant {index}: {s.variant.name}\n"
                f"- Description: {s.variant.description or 'No description'}\n"
                f"- Status: {s.variant.variant_status.value}\n"
                f"- Total Views: {s.views:,}\n"
                f"- Total Conversions: {s.conversions}\n"
                f"- Conversion Rate: {s.conversion_rate:.2f}%\n"
                f"- Confidence vs control: {significance.confidence:.1f}%"
            )

        return (
            "You are an A/B testing analytics expert. Analyze the following test results "
            "and provide insights.\n\n"
            f'Test: "{test.name}" (Product: {test.product_name})\n'
            f"Duration: {duration_days} days\n"
            f"Target Population: {test.target_population:,}\n\n"
            "Variant Performance Data:\n"
            + "\n\n".join(lines)
            + "\n\nProvide a brief analysis in JSON format with exactly these keys:\n"
            '- "summary": A 1-2 sentence summary of the performance difference and which '
            "variant is performing better\n"
            '- "recommendation": A clear recommendation on which variant to choose and why\n\n'
            "Return ONLY valid JSON, no markdown."
        )

    async def analyze(self, test: ABTest, stats: List[VariantStats]) -> Dict[str, str]:
        """
        Ask the LLM for a summary and recommendation.

        Returns:
            Dict with 'summary' and 'recommendation'

        Raises:
            AnalysisError: If the provider call fails or the reply is not the expected JSON
        """
        start_time = time.time()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self.build_prompt(test, stats)}],
                max_tokens=300,
                response_format={"type": "json_object"}
            )
        except openai.OpenAIError as e:
            logger.error("analysis_failed", test_id=test.id, error=str(e), error_type=type(e).__name__)
            raise AnalysisError(f"LLM request failed: {str(e)}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AnalysisError("No response from LLM")

        try:
            analysis = json.loads(content)
        except json.JSONDecodeError as e:
            raise AnalysisError("LLM returned invalid JSON") from e

        if not isinstance(analysis, dict) or not {"summary", "recommendation"} <= analysis.keys():
            raise AnalysisError("LLM response is missing summary or recommendation")

        logger.info(
            "analysis_completed",
            test_id=test.id,
            model=self.model,
            latency_ms=int((time.time() - start_time) * 1000)
        )

        return {
            "summary": str(analysis["summary"]),
            "recommendation": str(analysis["recommendation"])
        }

"""
Results Writer
==============
Serializes a FixRunResult into results.json.
"""
import json
import logging
import os

from fixpatches.models.run_result import FixRunResult

logger = logging.getLogger(__name__)


class ResultsWriter:
    """
    Service responsible for compiling the full history of a fix run
    (per patch, per attempt) into a structured JSON file.
    """

    @staticmethod
    def build(result: FixRunResult) -> dict:
        data = {
            "project": {
                "name": result.project,
                "change_request": result.change_request,
            },
            "patches": [],
            "final_results": {
                "status": result.status,
                "patches_total": len(result.patches),
                "patches_succeeded": sum(1 for p in result.patches if p.succeeded),
                "patches_fixed": sum(1 for p in result.patches if p.fixed),
                "oracle_calls": sum(p.oracle_calls for p in result.patches),
                "total_cost_usd": round(result.total_cost_usd, 4),
                "run_time_seconds": round(result.run_time_seconds, 2),
                "summary": result.summary,
                "error": result.error,
            },
        }
        for patch in result.patches:
            data["patches"].append(patch.model_dump(mode="json"))
        return data

    @staticmethod
    def write_results(result: FixRunResult, output_path: str = "results.json") -> bool:
        """
        Compile ``result`` and write it to ``output_path``.
        """
        try:
            data = ResultsWriter.build(result)
            abs_output = os.path.abspath(output_path)
            logger.info("Writing final results to %s", abs_output)

            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            return True

        except Exception as e:
            logger.error("Failed to write results.json: %s", e, exc_info=True)
            return False

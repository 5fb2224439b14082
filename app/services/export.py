"""
Task output export: markdown report and ZIP package.
"""

import io
import json
import zipfile
from datetime import datetime, timezone

from app.agents.orchestrator.models import AggregatedResult


def render_markdown(result: AggregatedResult) -> str:
    return result.markdown


def render_zip_package(goal: str, result: AggregatedResult) -> bytes:
    """
    Bundle a task's output into a ZIP archive.

    Layout:
        summary.txt
        report.md
        meta.json
        subtasks/<n>-<agent>.json
    """
    meta = {
        "goal": goal,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "outputs": result.outputs,
    }

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("summary.txt", result.summary)
        archive.writestr("report.md", result.markdown)
        archive.writestr("meta.json", json.dumps(meta, indent=2, ensure_ascii=False))
        for index, subtask in enumerate(result.subtasks, 1):
            archive.writestr(
                f"subtasks/{index}-{subtask.agent.value}.json",
                subtask.model_dump_json(indent=2),
            )

    return buffer.getvalue()

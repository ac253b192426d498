from __future__ import annotations

from typing import List

from svn_review.models import ReviewRequest

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert code reviewer. Review the provided commits for potential issues, bugs,"
    " security vulnerabilities, code quality problems, and best practice violations."
)

_RESPONSE_INSTRUCTIONS = """
## Instructions
Please review the above commits and provide structured feedback in the following JSON format:
{
  "findings": [
    {
      "commitId": "commit_id",
      "severity": "critical|high|medium|low|info",
      "category": "category_name",
      "title": "Brief title",
      "description": "Detailed description",
      "filePath": "path/to/file (optional)",
      "lineNumber": 123 (optional),
      "suggestion": "How to fix (optional)"
    }
  ],
  "summary": "Overall summary of the review"
}"""


def build_prompt(request: ReviewRequest) -> str:
    """Render a review request as a single deterministic prompt."""
    parts: List[str] = [f"{request.system_prompt}\n\n"]

    if request.rules:
        parts.append("## Review Rules\n")
        parts.extend(f"- {rule.name}: {rule.rule}\n" for rule in request.rules)
        parts.append("\n")

    parts.append("## Commits to Review\n\n")
    for commit in request.commits:
        parts.append(f"### Commit: {commit.id}\n")
        parts.append(f"Author: {commit.author}\n")
        parts.append(f"Date: {commit.timestamp.isoformat()}\n")
        parts.append(f"Message: {commit.message}\n\n")
        parts.append(f"```diff\n{commit.diff}\n```\n\n")

    parts.append(_RESPONSE_INSTRUCTIONS)
    return "".join(parts)

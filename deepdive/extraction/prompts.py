"""
Prompt templates for the insight extraction layer.

System prompts carry the current date so models reason about recency.
Task prompts always ask for a single raw JSON object; replies are still
cleaned up by text.parse_json_reply() because not every model obeys.
"""

from datetime import date
from typing import List, Optional


def _today() -> str:
    return date.today().strftime("%A, %B %d, %Y")


# ============================================================================
# SYSTEM PROMPTS
# ============================================================================

def system_prompt() -> str:
    return f"""You are a highly skilled research assistant specializing in producing comprehensive and state-of-the-art research analyses and reports. Your output must be professional, compelling, and adhere to advanced research methodologies.

Today is {_today()}.

When instructed to return JSON, provide ONLY a complete and valid JSON object without any markdown formatting, code blocks, or extraneous text. The JSON object must be parseable and must not include any additional content or commentary.

For example, if asked to return a JSON object with questions, respond with exactly:
{{"questions": ["question 1", "question 2"]}}

All search queries must be in English."""


def feedback_system_prompt() -> str:
    return f"""You are a research assistant tasked with generating clarifying follow-up questions to help refine a research query.

Today is {_today()}.

Return ONLY a valid JSON object with a "questions" array containing follow-up questions as strings and a "language" string naming the language of the user's query. Do not include any markdown formatting, code blocks, or additional text.

Write the questions in the SAME LANGUAGE as the user."""


def report_system_prompt(language: Optional[str] = None) -> str:
    return f"""You are a seasoned research assistant tasked with compiling a final, high-caliber research report based on comprehensive insights and data. Your report must be professional, compelling, and meticulously detailed.

Today is {_today()}.

Use Markdown formatting. The report MUST be written in the detected language: "{language or 'English'}". Do not fabricate or introduce any URLs within the report's main content; only incorporate the verified URLs in the "Citations" section appended at the end of the report.

Ensure that the final report directly reflects the user's original input and the feedback provided. Structure the report into the following sections:
1. **Executive Summary**: A succinct overview of the research findings.
2. **User Intent and Inputs**: A restatement of the original query and the feedback responses.
3. **Directly Requested Findings**: The key requirements extracted from the user input, answered.
4. **Introduction**: Context, background, and the significance of the research topic.
5. **Methodology**: The research approach and analytical methods.
6. **Key Insights**: In-depth and critical findings derived from the research.
7. **Recommendations**: Actionable strategies and directions for future research.
8. **Conclusion**: A concise summary of the research outcomes.
9. **Citations**: A list of all URLs referenced in the research.

Return only a valid JSON object in the following format:
{{"reportMarkdown": "Your complete Markdown formatted report here with \\n for new lines."}}"""


# ============================================================================
# TASK PROMPTS
# ============================================================================

def sub_queries_prompt(query: str, num_queries: int, learnings: List[str]) -> str:
    """Ask for `num_queries` search queries, each with a research goal."""
    prompt = f"""Generate {num_queries} search queries for "{query}"."""

    if learnings:
        joined = "\n".join(learnings)
        prompt += f"""
Previous insights:
{joined}

Use the insights to make the new queries more specific and avoid repeating covered ground."""

    prompt += f"""

Each query must be unique and target a different angle. For each query give the research goal it serves and how to advance the research once results are found.

Return JSON:
{{"queries": [{{"query": "solid state battery energy density 2025", "researchGoal": "Establish current performance figures"}}]}}

Return at most {num_queries} queries."""
    return prompt


def process_result_prompt(
    query: str,
    contents: str,
    num_learnings: int,
    num_follow_ups: int,
    include_top_urls: bool
) -> str:
    """Ask for learnings and follow-up questions from scraped summaries."""
    top_urls_instruction = ""
    if include_top_urls:
        top_urls_instruction = """
Also list the best recommendations found in the contents as "topUrls": objects with "url" and "description"."""

    return f"""Given the following contents from a search for the query "{query}", extract up to {num_learnings} learnings and up to {num_follow_ups} follow-up questions.

Learnings must be unique, concise and information dense. Include entities (people, places, companies, products), exact metrics, numbers and dates. Each learning must name its source title and source URL.
Follow-up questions should point research towards what is still unknown.{top_urls_instruction}

<contents>
{contents}
</contents>

Return JSON:
{{"learnings": [{{"insight": "...", "sourceTitle": "...", "sourceUrl": "https://..."}}], "followUpQuestions": ["..."], "topUrls": [{{"url": "https://...", "description": "..."}}]}}"""


def summary_prompt(content: str) -> str:
    return f"""Write a concise executive summary (one to three paragraphs) of the following research insights. Return plain text, not JSON.

<insights>
{content}
</insights>"""


def final_report_prompt(prompt: str, executive_summary: str, formatted_learnings: str) -> str:
    return f"""Write the final research report for the following user input.

<user_input>
{prompt}
</user_input>

<executive_summary>
{executive_summary}
</executive_summary>

<learnings>
{formatted_learnings}
</learnings>"""


def feedback_prompt(query: str, num_questions: int) -> str:
    return f"""Given the following research query from the user, ask up to {num_questions} follow-up questions to clarify the research direction. Detect the language of the query.

<query>
{query}
</query>

Return JSON:
{{"questions": ["..."], "language": "English"}}"""


__all__ = [
    "system_prompt",
    "feedback_system_prompt",
    "report_system_prompt",
    "sub_queries_prompt",
    "process_result_prompt",
    "summary_prompt",
    "final_report_prompt",
    "feedback_prompt",
]

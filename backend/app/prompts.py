"""Prompt payloads for the three job kinds.

Essay prompts come in variants selected by ``promptVariant``:

- ``standard``: flat learning material per paragraph, 4-6 paragraphs.
- ``tiered``: learning material split into foundation/core/extension tiers.
- ``fidelity``: mirrors the supplied mark scheme's own criteria and levels.

Grading is ``holistic`` (grade boundaries with descriptors) when the teacher
supplied boundaries, otherwise ``weighted`` criteria.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from . import config
from .boundaries import GradeBoundary, format_table, interpolate_boundaries, parse_grade_range

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search"}

VARIANTS = ("standard", "tiered", "fidelity")
ESSAY_MAX_TOKENS = {"standard": 8000, "tiered": 16000, "fidelity": 16000}
SEARCH_MAX_TOKENS = 4000
GRADE_SEARCH_MAX_TOKENS = 2000

SOURCE_PLACEHOLDER = "SOURCE_MATERIAL"


class PromptPayload(BaseModel):
    messages: List[Dict[str, Any]]
    max_tokens: int
    system: Optional[str] = None
    tools: Optional[List[Dict[str, Any]]] = None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _file_blocks(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    for f in data.get("sourceFiles") or []:
        media_type = f.get("type") or ""
        if media_type == "application/pdf":
            blocks.append(
                {"type": "document", "source": {"type": "base64", "media_type": media_type, "data": f.get("content")}}
            )
            blocks.append({"type": "text", "text": f"[Source file: {f.get('name')}]"})
        elif media_type.startswith("image/"):
            blocks.append(
                {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": f.get("content")}}
            )
            blocks.append({"type": "text", "text": f"[Image: {f.get('name')}]"})
    mark_scheme_file = data.get("markSchemeFile") or {}
    if mark_scheme_file.get("type") == "application/pdf":
        blocks.append(
            {
                "type": "document",
                "source": {"type": "base64", "media_type": "application/pdf", "data": mark_scheme_file.get("content")},
            }
        )
        blocks.append({"type": "text", "text": f"[Mark scheme: {mark_scheme_file.get('name')}]"})
    return blocks


def image_files(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [f for f in data.get("sourceFiles") or [] if (f.get("type") or "").startswith("image/")]


def content_replacements(data: Dict[str, Any]) -> Dict[str, str]:
    """Exact content for the placeholders the essay prompt asks the model to emit."""
    replacements: Dict[str, str] = {}
    if data.get("sourceMaterial"):
        replacements[SOURCE_PLACEHOLDER] = data["sourceMaterial"]
    for f in image_files(data):
        if f.get("name") and f.get("content"):
            replacements[f"IMAGE:{f['name']}"] = f"data:{f['type']};base64,{f['content']}"
    return replacements


def essay_boundaries(data: Dict[str, Any]) -> Optional[List[GradeBoundary]]:
    return interpolate_boundaries(
        data.get("gradeBoundaries"),
        total_marks=_int_or_none(data.get("totalMarks")),
        grade_range=parse_grade_range(data.get("gradeScale")),
    )


def resolve_variant(data: Dict[str, Any]) -> str:
    variant = (data.get("promptVariant") or "standard").lower()
    if variant not in VARIANTS:
        logger.warning("Unknown prompt variant %r, using standard", variant)
        return "standard"
    return variant


def _boundary_section(table: List[GradeBoundary]) -> str:
    return (
        "\n## GRADE BOUNDARIES\n"
        "The complete boundary table for this paper (interpolated grades are marked):\n"
        f"{format_table(table)}\n\n"
        "Write a descriptor for EVERY grade above, highest first. Each descriptor is 2-3 "
        "sentences describing what a response at that grade demonstrates, referencing the "
        "mark scheme criteria. Keep the marks exactly as given.\n"
    )


def _grading_template(table: Optional[List[GradeBoundary]]) -> str:
    if table:
        return """
  gradingMode: "holistic",
  gradeBoundaries: [
    // one entry per grade in the table above, highest first
    {
      grade: "[grade]",
      minMarks: [minimum marks],
      maxMarks: [maximum marks],
      descriptor: "[2-3 sentences referencing the mark scheme]"
    }
  ]"""
    return """
  gradingMode: "weighted",
  gradingCriteria: {
    content: { weight: 30, description: "[From mark scheme]" },
    analysis: { weight: 30, description: "[From mark scheme]" },
    structure: { weight: 20, description: "[From mark scheme]" },
    expression: { weight: 20, description: "[From mark scheme]" }
  }"""


def _learning_material_template(variant: str, heading: str) -> str:
    if variant == "tiered":
        return f"""learningMaterial: {{
        foundation: `## {heading} - Getting Started\\n\\n[Step-by-step support]`,
        core: `## {heading}\\n\\n[Guidance for a secure answer]`,
        extension: `## {heading} - Going Further\\n\\n[Challenge for top-band answers]`
      }},"""
    return f"""learningMaterial: `## {heading}

[Detailed, specific guidance for this essay]

### Key Points to Cover
- [Specific point]

### Sentence Starters
- "[Relevant starter]..."
`,"""


def _fidelity_rules() -> str:
    return """
## MARK SCHEME FIDELITY
The mark scheme above is the authoritative source for assessment. You must:
1. Preserve the exact assessment objectives (AOs) or criteria categories
2. Include ALL level/band descriptors, lowest to highest
3. Use the exact mark allocations
4. Retain the mark scheme's own terminology
5. Populate fullMarkScheme with the complete mark scheme text
6. Give every paragraph an assessmentFocus naming the AO or criterion it targets
"""


def _placeholder_rules(data: Dict[str, Any]) -> str:
    lines = []
    if data.get("sourceMaterial"):
        lines.append(
            f"- Do NOT copy the source material. Write sourceText: `{{{{{SOURCE_PLACEHOLDER}}}}}` "
            "and it will be filled in with the exact text."
        )
    for f in image_files(data):
        lines.append(
            f"- To show the image {f.get('name')}, use the string \"{{{{IMAGE:{f.get('name')}}}}}\" as its src."
        )
    if not lines:
        return ""
    return "\n## EMBEDDED CONTENT\n" + "\n".join(lines) + "\n"


def build_essay_prompt(
    data: Dict[str, Any],
    boundaries: Optional[List[GradeBoundary]] = None,
) -> PromptPayload:
    variant = resolve_variant(data)
    subject = data.get("subject") or "Subject"
    year_group = data.get("yearGroup") or "Year"
    total_marks = _int_or_none(data.get("totalMarks"))
    min_words = data.get("minWords") or 80
    target_words = data.get("targetWords") or 150
    max_attempts = data.get("maxAttempts") or 3
    password = data.get("teacherPassword") or config.DEFAULT_TEACHER_PASSWORD
    time_allowed = data.get("timeAllowed")

    exam_info = [
        f"- Subject: {data.get('subject') or 'Not specified'}",
        f"- Year Group: {data.get('yearGroup') or 'Not specified'}",
        f"- Exam Board: {data.get('examBoard') or 'Not specified'}",
        f"- Total Marks: {total_marks or 'Not specified'}",
        f"- Time Allowed: {str(time_allowed) + ' minutes' if time_allowed else 'Not specified'}",
    ]
    if data.get("paperName"):
        exam_info.append(f"- Paper: {data['paperName']}")

    sections = [
        "You are an expert educational content designer specialising in UK examinations. "
        "Create a guided essay writing configuration.",
        "## EXAM INFORMATION\n" + "\n".join(exam_info),
        "## EXAM QUESTION\n" + (data.get("examQuestion") or "No question provided"),
    ]
    if data.get("sourceMaterial"):
        sections.append("## SOURCE MATERIAL\n" + data["sourceMaterial"])
    sections.append(
        "## MARK SCHEME\n"
        + (data.get("markScheme") or "No mark scheme provided - create appropriate criteria for this subject.")
    )
    if variant == "fidelity":
        sections.append(_fidelity_rules())
    if boundaries:
        sections.append(_boundary_section(boundaries))
    if data.get("additionalNotes"):
        sections.append("## TEACHER NOTES\n" + data["additionalNotes"])
    sections.append(
        "## CONFIGURATION SETTINGS\n"
        f"- Min words/paragraph: {min_words}\n"
        f"- Target words/paragraph: {target_words}\n"
        f"- Max attempts: {max_attempts}\n"
        f"- Teacher password: {password}"
    )
    placeholders = _placeholder_rules(data)
    if placeholders:
        sections.append(placeholders)
    sections.append(
        "## FORMATTING RULES\n"
        "- Use ONLY plain ASCII characters: no symbols, emojis or accented characters\n"
        "- Use straight quotes only\n"
        "- The essay id is lowercase with hyphens (e.g. 'creative-writing-sunset')"
    )

    fidelity_fields = ""
    full_mark_scheme = ""
    if variant == "fidelity":
        fidelity_fields = '\n      assessmentFocus: ["[AO or criterion]"],'
        full_mark_scheme = "\n  fullMarkScheme: `[Complete mark scheme]`,"
    intro_material = _learning_material_template(variant, "Writing Your Introduction")
    conclusion_material = _learning_material_template(variant, "Writing Your Conclusion")
    grading = _grading_template(boundaries)
    template = f"""```javascript
window.ESSAYS = window.ESSAYS || {{}};
window.ESSAYS['[essay-id]'] = {{
  id: '[essay-id]',
  title: "[Title for this essay task]",
  subject: "{subject}",
  yearGroup: "{year_group}",
  totalMarks: {total_marks or 40},
  essayTitle: "[The exam question]",
  instructions: "[Clear instructions for students]",
  maxAttempts: {max_attempts},
  minWordsPerParagraph: {min_words},
  targetWordsPerParagraph: {target_words},
  teacherPassword: "{password}",{full_mark_scheme}
  paragraphs: [
    {{
      id: 1,
      title: "Introduction",
      type: "introduction",
      {intro_material}
      writingPrompt: "[Clear instruction]",
      keyPoints: ["[Mark scheme criterion]"],{fidelity_fields}
      exampleQuotes: [],
      points: [marks]
    }},
    // body paragraphs in the same shape
    {{
      id: [n],
      title: "Conclusion",
      type: "conclusion",
      {conclusion_material}
      writingPrompt: "[Instruction]",
      keyPoints: ["[Criterion]"],{fidelity_fields}
      exampleQuotes: [],
      points: [marks]
    }}
  ],{grading}
}};
```"""
    sections.append(
        "## TASK\nGenerate a complete essay configuration with 4-6 paragraphs. "
        "Output ONLY valid JavaScript using this EXACT format:\n\n" + template
    )

    content = _file_blocks(data)
    content.append({"type": "text", "text": "\n\n".join(sections)})
    return PromptPayload(
        messages=[{"role": "user", "content": content}],
        max_tokens=ESSAY_MAX_TOKENS[variant],
    )


SEARCH_SYSTEM = """You are an expert at finding UK exam past paper questions. Search for past paper questions and return structured information about them.

For each question extract the exact question text, the exam session, the total marks, any source material provided with the question, and mark scheme information if available. Focus on the last 5 years: exam board websites, specimen papers and reputable revision sites.

Return your findings as JSON."""


def build_search_prompt(data: Dict[str, Any]) -> PromptPayload:
    exam_board = data.get("examBoard")
    subject = data.get("subject")
    paper = data.get("paper")
    question_number = data.get("questionNumber")
    target = f"{exam_board} {subject}"
    if paper:
        target += f" {paper}"
    if question_number:
        target += f" Question {question_number}"
    prompt = f"""Search for {target} past paper questions.

Find as many different year versions of this question type as possible. Return ONLY valid JSON in this format:
{{
  "questions": [
    {{
      "year": "June 2023",
      "questionText": "...",
      "totalMarks": 40,
      "sourceMaterial": "...",
      "markScheme": "...",
      "paperName": "Paper 2 Section B",
      "sourceUrl": "..."
    }}
  ],
  "examInfo": {{
    "examBoard": "{exam_board}",
    "subject": "{subject}",
    "paper": "{paper or 'Not specified'}",
    "questionNumber": "{question_number or 'Not specified'}"
  }}
}}

If you cannot find specific past papers, describe the typical question format and mark scheme from examiner reports and specifications."""
    return PromptPayload(
        messages=[{"role": "user", "content": prompt}],
        system=SEARCH_SYSTEM,
        max_tokens=SEARCH_MAX_TOKENS,
        tools=[WEB_SEARCH_TOOL],
    )


GRADE_SEARCH_SYSTEM = """You are an expert at finding UK exam grade boundaries. Search for the most recent official grade boundaries on the exam board's website.

Return JSON with this structure:
{
  "year": "2024",
  "session": "June",
  "examBoard": "AQA",
  "qualification": "GCSE",
  "subject": "English Language",
  "component": "Paper 2",
  "maxMark": 80,
  "boundaries": [
    {"grade": "9", "minMarks": 64},
    {"grade": "8", "minMarks": 55}
  ],
  "sourceUrl": "https://..."
}

A-Level grades: A*, A, B, C, D, E. GCSE grades: 9 to 1. IB levels: 7 to 1.
Always include maxMark so the boundaries can be scaled."""


def build_grade_search_prompt(data: Dict[str, Any]) -> PromptPayload:
    qualification = f" {data['qualification']}" if data.get("qualification") else ""
    exam_board = data.get("examBoard")
    prompt = (
        f"Search for the most recent official grade boundaries for {exam_board}{qualification} {data.get('subject')}.\n\n"
        f"Look on the official {exam_board} website and use the most recent year available. "
        "Prefer boundaries for the writing/essay component if identifiable, otherwise the overall qualification.\n\n"
        "Return ONLY valid JSON."
    )
    return PromptPayload(
        messages=[{"role": "user", "content": prompt}],
        system=GRADE_SEARCH_SYSTEM,
        max_tokens=GRADE_SEARCH_MAX_TOKENS,
        tools=[WEB_SEARCH_TOOL],
    )

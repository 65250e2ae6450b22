from backend.app.prompts import (
    GRADE_SEARCH_MAX_TOKENS,
    WEB_SEARCH_TOOL,
    build_essay_prompt,
    build_grade_search_prompt,
    build_search_prompt,
    content_replacements,
    essay_boundaries,
    resolve_variant,
)

ESSAY_INPUT = {
    "subject": "English Language",
    "yearGroup": "Year 11",
    "examBoard": "AQA",
    "totalMarks": "40",
    "examQuestion": "Write a description of a storm.",
    "markScheme": "AO5 24 marks, AO6 16 marks",
}


def _prompt_text(payload):
    return payload.messages[0]["content"][-1]["text"]


def test_essay_prompt_standard_variant():
    payload = build_essay_prompt(ESSAY_INPUT)
    text = _prompt_text(payload)

    assert payload.max_tokens == 8000
    assert payload.tools is None
    assert "Write a description of a storm." in text
    assert "AO5 24 marks" in text
    assert "teacherPassword: \"teacher123\"" in text
    assert "gradingCriteria" in text
    assert "gradingMode: \"weighted\"" in text
    assert "gradeBoundaries" not in text


def test_essay_prompt_embeds_interpolated_boundaries():
    data = dict(ESSAY_INPUT, gradeBoundaries="Grade 9: 36-40\nGrade 6: 24-28\nGrade 4: 16-20")
    table = essay_boundaries(data)

    text = _prompt_text(build_essay_prompt(data, table))

    assert "- Grade 8: 32-35 marks (interpolated)" in text
    assert "- Grade 9: 36-40 marks" in text
    assert "gradeBoundaries: [" in text
    assert "gradingMode: \"holistic\"" in text
    assert "gradingCriteria" not in text


def test_essay_prompt_variants():
    tiered = build_essay_prompt(dict(ESSAY_INPUT, promptVariant="tiered"))
    fidelity = build_essay_prompt(dict(ESSAY_INPUT, promptVariant="FIDELITY"))

    assert "foundation:" in _prompt_text(tiered)
    assert tiered.max_tokens == 16000
    assert "MARK SCHEME FIDELITY" in _prompt_text(fidelity)
    assert "assessmentFocus" in _prompt_text(fidelity)
    assert resolve_variant({"promptVariant": "holistic-v2"}) == "standard"


def test_essay_prompt_attaches_files_before_text():
    data = dict(
        ESSAY_INPUT,
        sourceFiles=[
            {"name": "extract.pdf", "type": "application/pdf", "content": "UERG"},
            {"name": "map.png", "type": "image/png", "content": "iVBO"},
            {"name": "notes.docx", "type": "application/msword", "content": "xx"},
        ],
        markSchemeFile={"name": "ms.pdf", "type": "application/pdf", "content": "TVM="},
    )

    content = build_essay_prompt(data).messages[0]["content"]

    assert [block["type"] for block in content] == ["document", "text", "image", "text", "document", "text", "text"]
    assert content[2]["source"] == {"type": "base64", "media_type": "image/png", "data": "iVBO"}
    assert '"{{IMAGE:map.png}}"' in content[-1]["text"]


def test_content_replacements():
    data = {
        "sourceMaterial": "The rain came down.",
        "sourceFiles": [{"name": "map.png", "type": "image/png", "content": "iVBO"}],
    }

    assert content_replacements(data) == {
        "SOURCE_MATERIAL": "The rain came down.",
        "IMAGE:map.png": "data:image/png;base64,iVBO",
    }


def test_search_prompt_uses_web_search():
    payload = build_search_prompt({"examBoard": "AQA", "subject": "English Literature", "paper": "Paper 1"})

    assert payload.tools == [WEB_SEARCH_TOOL]
    assert payload.system
    assert "AQA English Literature Paper 1 past paper questions" in payload.messages[0]["content"]
    assert '"questionNumber": "Not specified"' in payload.messages[0]["content"]


def test_grade_search_prompt():
    payload = build_grade_search_prompt({"examBoard": "Edexcel", "subject": "History", "qualification": "GCSE"})

    assert payload.max_tokens == GRADE_SEARCH_MAX_TOKENS
    assert "Edexcel GCSE History" in payload.messages[0]["content"]
    assert "maxMark" in payload.system

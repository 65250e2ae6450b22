import json

import httpx
import pytest

from backend.app.generation import (
    GenerationClient,
    escape_template_literal,
    extract_config,
    extract_output,
    extract_structured,
    inject_content,
)
from backend.app.prompts import WEB_SEARCH_TOOL, PromptPayload

JS_BLOCK = "window.ESSAYS = window.ESSAYS || {};\nwindow.ESSAYS['storm'] = { id: 'storm' };"


def test_extracts_fenced_javascript_block():
    text = f"Here is your configuration:\n\n```javascript\n{JS_BLOCK}\n```\n\nLet me know!"

    extraction = extract_output(text)

    assert extraction.kind == "code"
    assert extraction.value == JS_BLOCK


def test_extracts_fence_without_language_tag():
    extraction = extract_output("```\n  const x = 1;  \n```")

    assert extraction.value == "const x = 1;"


def test_extracts_marked_object_from_prose():
    text = 'I found these: {"year": "2024", "boundaries": [{"grade": "9", "minMarks": 64}]} - hope that helps {}'

    extraction = extract_output(text, ("boundaries",))

    assert extraction.kind == "structured"
    assert extraction.value["boundaries"] == [{"grade": "9", "minMarks": 64}]


def test_braces_inside_strings_do_not_break_matching():
    text = 'Result {"questions": [{"questionText": "Explain {this} and \\"that\\" }"}]} end'

    extraction = extract_output(text, ("questions",))

    assert extraction.kind == "structured"
    assert extraction.value["questions"][0]["questionText"] == 'Explain {this} and "that" }'


def test_invalid_marked_object_falls_back_to_unstructured():
    text = 'Sorry: {"boundaries": [grade 9 is 64]}'

    extraction = extract_output(text, ("boundaries",))

    assert extraction.kind == "unstructured"
    assert extraction.value == text


def test_no_marker_falls_back_to_unstructured():
    text = 'Here is some JSON {"other": 1}'

    assert extract_output(text, ("questions",)).kind == "unstructured"
    assert extract_output(None).value == ""


def test_extract_structured_reads_fenced_json():
    payload = {"questions": [{"year": "June 2023"}], "examInfo": {"subject": "English"}}
    text = f"```json\n{json.dumps(payload, indent=2)}\n```"

    extraction = extract_structured(text, ("questions",))

    assert extraction.kind == "structured"
    assert extraction.value == payload


def test_extract_structured_fenced_non_json_is_unstructured():
    text = "```\nno data found\n```"

    extraction = extract_structured(text, ("questions",))

    assert extraction.kind == "unstructured"
    assert extraction.value == text


def test_extract_config_falls_back_to_assignment():
    text = "Sure! window.ESSAYS['x'] = { id: 'x' };\nThanks"

    extraction = extract_config(text)

    assert extraction.kind == "code"
    assert extraction.value == "window.ESSAYS['x'] = { id: 'x' };"


def test_extract_config_raw_text_fallback():
    extraction = extract_config("  I could not produce a configuration.  ")

    assert extraction.kind == "unstructured"
    assert extraction.value == "I could not produce a configuration."


def test_escape_template_literal():
    assert escape_template_literal("a\\b `c` ${d}") == "a\\\\b \\`c\\` \\${d}"


def test_inject_content_replaces_placeholders():
    code = "sourceText: `{{SOURCE_MATERIAL}}`,\nimg: \"{{IMAGE:map.png}}\",\nother: '{{UNKNOWN}}'"

    out = inject_content(
        code,
        {"SOURCE_MATERIAL": "It was `dark` and ${cold}\\n", "IMAGE:map.png": "data:image/png;base64,AAA="},
    )

    assert "sourceText: `It was \\`dark\\` and \\${cold}\\\\n`" in out
    assert 'img: "data:image/png;base64,AAA="' in out
    assert "{{UNKNOWN}}" in out


def test_inject_content_without_replacements_is_identity():
    assert inject_content("x = `{{SOURCE_MATERIAL}}`", {}) == "x = `{{SOURCE_MATERIAL}}`"


def _payload(**kwargs):
    return PromptPayload(messages=[{"role": "user", "content": "hi"}], max_tokens=100, **kwargs)


def _client(handler):
    return GenerationClient(
        "sk-test",
        model="test-model",
        api_url="https://api.example.test/v1/messages",
        transport=httpx.MockTransport(handler),
    )


def test_generate_concatenates_text_blocks():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [
                    {"type": "text", "text": "Part one, "},
                    {"type": "server_tool_use", "name": "web_search"},
                    {"type": "text", "text": "part two."},
                ],
                "stop_reason": "end_turn",
            },
        )

    result = _client(handler).generate(_payload(system="Be brief", tools=[WEB_SEARCH_TOOL]))

    assert result.ok
    assert result.text == "Part one, part two."
    assert result.stop_reason == "end_turn"
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"] == {
        "model": "test-model",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": "hi"}],
        "system": "Be brief",
        "tools": [WEB_SEARCH_TOOL],
    }


def test_generate_omits_optional_fields():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"content": []})

    result = _client(handler).generate(_payload())

    assert result.text == ""
    assert "system" not in bodies[0] and "tools" not in bodies[0]


def test_generate_non_success_returns_error():
    def handler(request):
        return httpx.Response(529, json={"type": "error", "error": {"type": "overloaded_error"}})

    result = _client(handler).generate(_payload())

    assert not result.ok
    assert result.error["status"] == 529
    assert result.error["body"]["error"]["type"] == "overloaded_error"


def test_generate_non_json_error_body_kept_as_text():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    result = _client(handler).generate(_payload())

    assert result.error["status"] == 502
    assert result.error["body"] == "Bad Gateway"


def test_generate_transport_failure_returns_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = _client(handler).generate(_payload())

    assert not result.ok
    assert "connection refused" in result.error["message"]
    assert result.error["type"] == "ConnectError"


@pytest.mark.parametrize("body", ["not json", "[1, 2]"])
def test_generate_unexpected_success_body_returns_error(body):
    def handler(request):
        return httpx.Response(200, text=body)

    result = _client(handler).generate(_payload())

    assert not result.ok
    assert result.error["body"] == body

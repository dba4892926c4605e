"""
Tests for the language-model gateway.

The OpenAI client and Gemini model are replaced with mocks, so these check
prompt plumbing, fallback order and reply parsing without network access.
"""
import json
from unittest.mock import Mock

import pytest

from errors import UpstreamUnavailable
from llm import (
    DEFAULT_INTENT, RecommendationGateway, build_chat_user_prompt, extract_suggestions,
    normalize_skeleton, parse_json_reply, strip_code_fences,
)


def openai_replying(*contents):
    client = Mock()
    client.chat.completions.create.side_effect = [
        Mock(choices=[Mock(message=Mock(content=c))]) for c in contents
    ]
    return client


@pytest.fixture
def skeleton_json():
    return json.dumps({
        "title": "Coffee and culture",
        "description": "A slow afternoon",
        "type": "afternoon",
        "mood": "relaxed",
        "purpose": "culture",
        "places": [
            {"name": "Cafe A", "category": "Coffee Shop", "estimatedDuration": 60},
            {"name": "Museum B", "category": "Museum", "estimatedDuration": "90"},
            {"category": "nameless stub"},
        ],
        "totalDuration": 150,
        "estimatedCost": 25.4,
        "tags": ["coffee", "art"],
    })


class TestParsing:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n[1]\n```') == "[1]"
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    def test_parse_json_reply_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_json_reply("Sure! Here are some ideas")

    def test_extract_suggestions(self):
        text = "Try these:\n• Blue Bottle\n- Dolores Park\n* SFMOMA\nEnjoy!"
        assert extract_suggestions(text) == ["Blue Bottle", "Dolores Park", "SFMOMA"]

    def test_normalize_skeleton(self, skeleton_json):
        skeleton = normalize_skeleton(json.loads(skeleton_json))
        assert [p["name"] for p in skeleton["places"]] == ["Cafe A", "Museum B"]
        assert skeleton["places"][1]["estimatedDuration"] == 90
        assert skeleton["estimatedCost"] == 25
        assert skeleton["tags"] == ["coffee", "art"]

    def test_normalize_skeleton_defaults_title(self):
        assert normalize_skeleton({"places": []})["title"] == "AI Generated Itinerary"

    @pytest.mark.parametrize("raw", [[], {"title": "x"}, {"places": "nope"}])
    def test_normalize_skeleton_rejects_shape(self, raw):
        with pytest.raises(ValueError):
            normalize_skeleton(raw)

    def test_chat_prompt_lists_at_most_ten_places(self):
        places = [{"name": f"P{i}", "category": "Cafe"} for i in range(15)]
        prompt = build_chat_user_prompt("coffee?", places)
        assert "P9 (Cafe)" in prompt
        assert "P10" not in prompt


class TestFallback:
    def test_openai_first(self, settings):
        client = openai_replying("hello")
        gemini = Mock()
        gateway = RecommendationGateway(settings, openai_client=client, gemini_model=gemini)

        assert gateway.call_llm_with_fallback([{"role": "user", "content": "hi"}]) == "hello"
        gemini.generate_content.assert_not_called()
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == settings.openai_model
        assert kwargs["max_tokens"] == settings.llm_max_tokens

    def test_gemini_when_openai_fails(self, settings):
        client = Mock()
        client.chat.completions.create.side_effect = RuntimeError("quota")
        gemini = Mock()
        gemini.generate_content.return_value = Mock(text="from gemini")
        gateway = RecommendationGateway(settings, openai_client=client, gemini_model=gemini)

        reply = gateway.call_llm_with_fallback([
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "hi"},
        ])
        assert reply == "from gemini"
        prompt = gemini.generate_content.call_args.args[0]
        assert prompt == "System Instructions: rules\n\nhi"

    def test_both_fail_is_upstream_unavailable(self, settings):
        gemini = Mock()
        gemini.generate_content.side_effect = RuntimeError("down")
        gateway = RecommendationGateway(settings, openai_client=None, gemini_model=gemini)

        with pytest.raises(UpstreamUnavailable):
            gateway.call_llm_with_fallback([{"role": "user", "content": "hi"}])

    def test_no_providers_configured(self, settings):
        gateway = RecommendationGateway(settings)
        with pytest.raises(UpstreamUnavailable):
            gateway.call_llm_with_fallback([{"role": "user", "content": "hi"}])


class TestOperations:
    def test_extract_intent(self, settings):
        reply = '```json\n{"intent": "search", "entities": {"placeType": "cafe"}}\n```'
        gateway = RecommendationGateway(settings, openai_client=openai_replying(reply))
        intent = gateway.extract_intent("find a cafe")
        assert intent["entities"] == {"placeType": "cafe"}
        assert intent["context"] == {}

    def test_extract_intent_defaults_on_garbage(self, settings):
        gateway = RecommendationGateway(settings, openai_client=openai_replying("no idea"))
        assert gateway.extract_intent("find a cafe") == DEFAULT_INTENT

    def test_extract_intent_defaults_when_unavailable(self, settings):
        gateway = RecommendationGateway(settings)
        assert gateway.extract_intent("find a cafe") == DEFAULT_INTENT

    def test_converse_text_reply(self, settings):
        gateway = RecommendationGateway(settings, openai_client=openai_replying("Try:\n- Cafe A\n- Cafe B"))
        result = gateway.converse("coffee?", {"preferences": {}}, [])
        assert result["type"] == "text"
        assert result["data"]["suggestions"] == ["Cafe A", "Cafe B"]

    def test_converse_structured_reply(self, settings):
        gateway = RecommendationGateway(settings, openai_client=openai_replying('{"message": "hi"}'))
        assert gateway.converse("hi") == {"type": "structured", "data": {"message": "hi"}}

    def test_converse_propagates_outage(self, settings):
        with pytest.raises(UpstreamUnavailable):
            RecommendationGateway(settings).converse("hi")

    def test_skeleton_success(self, settings, skeleton_json):
        client = openai_replying(skeleton_json)
        gateway = RecommendationGateway(settings, openai_client=client)

        result = gateway.generate_itinerary_skeleton("coffee then art", {"cuisine": ["thai"]}, "-122.4,37.8")
        assert result["success"]
        assert result["itinerary"]["title"] == "Coffee and culture"

        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert '"thai"' in messages[0]["content"]
        assert "-122.4,37.8" in messages[1]["content"]

    def test_skeleton_unparseable(self, settings):
        gateway = RecommendationGateway(settings, openai_client=openai_replying("I'd suggest a cafe"))
        result = gateway.generate_itinerary_skeleton("coffee then art")
        assert result == {"success": False, "error": "Failed to generate itinerary"}

    def test_recommendations(self, settings):
        reply = json.dumps({
            "recommendations": [{"place": "Cafe A", "category": "Cafe", "reasoning": "quiet", "matchScore": 0.9}],
            "summary": "Quiet spots",
        })
        gateway = RecommendationGateway(settings, openai_client=openai_replying(reply))
        result = gateway.generate_recommendations({}, "-122.4,37.8", {"mood": "relaxed"})
        assert result["success"]
        assert result["recommendations"][0]["place"] == "Cafe A"
        assert result["summary"] == "Quiet spots"

    def test_recommendations_bad_shape(self, settings):
        gateway = RecommendationGateway(settings, openai_client=openai_replying('{"recommendations": "x"}'))
        assert not gateway.generate_recommendations({}, "-122.4,37.8")["success"]

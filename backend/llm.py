"""
Gateway to the language-model providers.

Every call is a fixed system prompt (behaviour rules and output schema) plus a
per-call user prompt (the request payload). OpenAI is tried first and Google
Gemini is the fallback.
"""

import json
import logging

import google.generativeai as genai
from openai import OpenAI

from errors import UpstreamUnavailable
from schemas import ItinerarySkeleton, RecommendationSet

logger = logging.getLogger(__name__)

MAX_PROMPT_PLACES = 10
SUGGESTION_MARKERS = ("•", "-", "*")

DEFAULT_INTENT = {"intent": "search", "entities": {}, "context": {}}

INTENT_SYSTEM_PROMPT = """You are an intent extraction system. Analyze the user message and extract:
1. Intent (search, recommendation, question, itinerary, etc.)
2. Entities (location, cuisine, activity, time, mood, etc.)
3. Context (time of day, purpose, preferences, etc.)

Return the result as JSON with the following structure:
{
  "intent": "string",
  "entities": {
    "location": "string",
    "cuisine": "string",
    "activity": "string",
    "time": "string",
    "mood": "string",
    "purpose": "string"
  },
  "context": {
    "timeOfDay": "string",
    "urgency": "string",
    "groupSize": "number"
  }
}
Return ONLY valid JSON, no markdown."""

ITINERARY_SCHEMA = """{
  "title": "string",
  "description": "string",
  "type": "morning|afternoon|evening|night|full-day",
  "mood": "relaxed|energetic|romantic|adventurous|social|productive|cultural",
  "purpose": "work|relax|explore|dine|nightlife|culture|shopping|outdoor",
  "places": [
    {
      "name": "string",
      "category": "string",
      "description": "string",
      "estimatedDuration": number,
      "notes": "string"
    }
  ],
  "totalDuration": number,
  "estimatedCost": number,
  "tags": ["string"]
}"""

RECOMMENDATION_SCHEMA = """{
  "recommendations": [
    {
      "place": "string",
      "category": "string",
      "reasoning": "string",
      "matchScore": number
    }
  ],
  "summary": "string"
}"""


# ---------------- prompt builders ----------------

def build_chat_system_prompt(user_context):
    user_context = user_context or {}
    return f"""You are LocalMate, an AI-powered travel and lifestyle companion. Your role is to help users find the perfect places based on their needs, preferences, and context.

User Context:
- Preferences: {json.dumps(user_context.get('preferences') or {}, default=str)}
- Location: {user_context.get('location') or 'Not specified'}
- Previous interactions: {json.dumps(user_context.get('history'), default=str) if user_context.get('history') else 'None'}

Guidelines:
1. Be friendly, helpful, and conversational
2. Ask clarifying questions when needed
3. Provide specific, actionable recommendations
4. Consider time of day, weather, and context
5. Suggest places that match user's mood and purpose
6. Include relevant details like ratings, price, and atmosphere
7. Keep responses concise but informative

Available place categories: restaurants, cafes, bars, parks, museums, theaters, shopping, gyms, spas, hotels, etc."""


def _name_and_category(place):
    if isinstance(place, dict):
        return place.get("name"), place.get("category")
    return getattr(place, "name", None), getattr(place, "category", None)


def build_chat_user_prompt(message, places):
    places = list(places or [])[:MAX_PROMPT_PLACES]
    if places:
        listed = ", ".join(f"{n} ({c})" for n, c in map(_name_and_category, places))
        places_info = f"Available places in the area: {listed}"
    else:
        places_info = "No specific places available yet."

    return f"""User message: "{message}"

{places_info}

Please provide a helpful response that:
1. Addresses the user's request
2. Suggests relevant places if applicable
3. Asks follow-up questions if needed
4. Provides context-aware recommendations"""


def build_itinerary_system_prompt(preferences):
    return f"""You are an expert travel planner creating personalized micro-itineraries. Consider the user's preferences and create engaging, realistic itineraries.

User Preferences:
{json.dumps(preferences or {}, indent=2, default=str)}

Guidelines:
1. Create 2-4 place itineraries for 2-6 hours
2. Consider logical flow and travel time between places
3. Mix different types of activities
4. Include estimated duration (minutes) for each place
5. Consider time of day and opening hours
6. Match user's mood and purpose
7. Provide brief descriptions for each place

Return the itinerary as JSON with this structure:
{ITINERARY_SCHEMA}
Return ONLY valid JSON, no markdown."""


def build_itinerary_user_prompt(prompt, location):
    return f"""Create a personalized itinerary based on this request: "{prompt}"

Location: {location or 'Not specified'}

Please create an engaging itinerary that matches the user's request and preferences."""


def build_recommendation_system_prompt(preferences):
    return f"""You are a personalized recommendation system. Based on user preferences and context, suggest the best places to visit.

User Preferences:
{json.dumps(preferences or {}, indent=2, default=str)}

Guidelines:
1. Consider user's cuisine preferences, price range, and atmosphere preferences
2. Suggest places that match their activity interests
3. Consider time of day and current context
4. Provide diverse options
5. Include reasoning for each recommendation

Return recommendations as JSON with this structure:
{RECOMMENDATION_SCHEMA}
Return ONLY valid JSON, no markdown."""


def build_recommendation_user_prompt(location, context):
    return f"""Generate personalized recommendations for location: {location}

Context: {json.dumps(context or {}, indent=2, default=str)}

Please provide relevant recommendations based on the user's preferences and current context."""


# ---------------- parsing ----------------

def strip_code_fences(content):
    """Remove a surrounding markdown code block if the model added one."""
    content = (content or "").strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
        content = content.strip()
    return content


def parse_json_reply(content):
    """Strict JSON parse of a model reply. Raises ValueError."""
    return json.loads(strip_code_fences(content))


def extract_suggestions(text):
    suggestions = []
    for line in (text or "").split("\n"):
        stripped = line.strip()
        if stripped.startswith(SUGGESTION_MARKERS):
            suggestion = stripped.lstrip("•-* ").strip()
            if suggestion:
                suggestions.append(suggestion)
    return suggestions


def normalize_skeleton(raw):
    """Validate the itinerary skeleton shape. Raises ValueError."""
    return ItinerarySkeleton.model_validate(raw).model_dump(by_alias=True)


# ---------------- gateway ----------------

class RecommendationGateway:
    def __init__(self, settings, openai_client=None, gemini_model=None):
        self.model = settings.openai_model
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.llm_temperature

        if openai_client is None and settings.openai_api_key:
            openai_client = OpenAI(api_key=settings.openai_api_key)
        self.client = openai_client

        if gemini_model is None and settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)
            gemini_model = genai.GenerativeModel(settings.gemini_model)
        self.gemini = gemini_model

    def call_gemini(self, messages, temperature, max_tokens):
        """Gemini has no chat roles here, so system and user turns are concatenated."""
        prompt_parts = []
        for msg in messages:
            if msg["role"] == "system":
                prompt_parts.append(f"System Instructions: {msg['content']}")
            else:
                prompt_parts.append(msg["content"])

        response = self.gemini.generate_content(
            "\n\n".join(prompt_parts),
            generation_config=genai.types.GenerationConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )
        return response.text

    def call_llm_with_fallback(self, messages, max_tokens=None, temperature=None):
        """Return the reply text, trying OpenAI first and Gemini second."""
        max_tokens = max_tokens or self.max_tokens
        temperature = self.temperature if temperature is None else temperature

        if self.client is not None:
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                return response.choices[0].message.content or ""
            except Exception as e:
                logger.warning("Error with %s: %s", self.model, e)

        if self.gemini is not None:
            try:
                logger.info("Falling back to Google Gemini")
                return self.call_gemini(messages, temperature, max_tokens) or ""
            except Exception as e:
                logger.error("Gemini fallback also failed: %s", e)

        raise UpstreamUnavailable("Language model unavailable")

    def _ask(self, system_prompt, user_prompt, **kwargs):
        return self.call_llm_with_fallback(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **kwargs,
        )

    def extract_intent(self, message):
        try:
            reply = self._ask(INTENT_SYSTEM_PROMPT, message, max_tokens=500, temperature=0.1)
            parsed = parse_json_reply(reply)
        except (UpstreamUnavailable, ValueError) as e:
            logger.warning("Intent extraction error: %s", e)
            return dict(DEFAULT_INTENT, entities={}, context={})
        if not isinstance(parsed, dict) or "intent" not in parsed:
            return dict(DEFAULT_INTENT, entities={}, context={})
        parsed.setdefault("entities", {})
        parsed.setdefault("context", {})
        return parsed

    def converse(self, message, user_context=None, candidate_places=None):
        reply = self._ask(
            build_chat_system_prompt(user_context),
            build_chat_user_prompt(message, candidate_places),
        )
        try:
            return {"type": "structured", "data": parse_json_reply(reply)}
        except ValueError:
            return {
                "type": "text",
                "data": {"message": reply, "suggestions": extract_suggestions(reply)},
            }

    def generate_itinerary_skeleton(self, prompt, preferences=None, location=None):
        reply = self._ask(
            build_itinerary_system_prompt(preferences),
            build_itinerary_user_prompt(prompt, location),
        )
        try:
            skeleton = normalize_skeleton(parse_json_reply(reply))
        except ValueError as e:
            logger.error("Failed to parse itinerary response: %s", e)
            return {"success": False, "error": "Failed to generate itinerary"}
        return {"success": True, "itinerary": skeleton}

    def generate_recommendations(self, preferences, location, context=None):
        reply = self._ask(
            build_recommendation_system_prompt(preferences),
            build_recommendation_user_prompt(location, context),
        )
        try:
            parsed = RecommendationSet.model_validate(parse_json_reply(reply))
        except ValueError as e:
            logger.error("Failed to parse recommendation response: %s", e)
            return {"success": False, "error": "Failed to generate recommendations"}

        result = parsed.model_dump(by_alias=True)
        result["success"] = True
        return result

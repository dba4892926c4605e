"""
Keyword-based preference analyzer and canned chat suggestions.

These are data tables plus small pure functions; nothing here calls a model.
"""

CUISINE_WORDS = ("italian", "chinese", "japanese", "indian", "mexican", "american", "french", "thai")
ATMOSPHERE_WORDS = ("quiet", "vibrant", "romantic", "casual", "formal", "outdoor")
BUDGET_WORDS = ("cheap", "budget", "affordable")
EXPENSIVE_WORDS = ("expensive", "luxury", "high-end")

CONFIDENCE_PER_SIGNAL = 0.3
CONFIDENCE_THRESHOLD = 0.5

TIME_SUGGESTIONS = {
    "morning": [
        "Find me a good coffee shop for breakfast",
        "Show me places to start my day",
        "I need a quiet place to work this morning",
    ],
    "afternoon": [
        "Find me a lunch spot",
        "Show me places to explore this afternoon",
        "I need a place to relax and recharge",
    ],
    "evening": [
        "Find me a nice restaurant for dinner",
        "Show me evening entertainment options",
        "I want to unwind after work",
    ],
    "night": [
        "Find me late-night food options",
        "Show me nightlife spots",
        "I need a quiet place to work late",
    ],
}

MOOD_SUGGESTIONS = {
    "energetic": ["Find me active and vibrant places"],
    "relaxed": ["Find me peaceful and quiet spots"],
    "romantic": ["Find me romantic date spots"],
    "social": ["Find me great places to meet people"],
}

PURPOSE_SUGGESTIONS = {
    "work": ["Find me coworking spaces", "Show me quiet cafes for work"],
    "explore": ["Find me interesting places to discover", "Show me local attractions"],
    "dine": ["Find me the best restaurants", "Show me unique dining experiences"],
    "relax": ["Find me peaceful spots", "Show me wellness places"],
}

QUICK_RESPONSES = [
    "Find me a coffee shop nearby",
    "Show me restaurants in the area",
    "What's popular around here?",
    "Find me a quiet place to work",
    "Show me places to explore",
    "Find me a good spot for dinner",
    "What's trending in this area?",
    "Find me outdoor activities",
]

CONTEXT_QUICK_RESPONSES = {
    "food": ["Find me the best pizza", "Show me healthy food options"],
    "work": ["Find me coworking spaces", "Show me quiet cafes"],
    "entertainment": ["Find me live music", "Show me movie theaters"],
}

MAX_SUGGESTIONS = 5
MAX_QUICK_RESPONSES = 8


def analyze_conversation(history):
    """
    Detect cuisine, atmosphere and price signals in a conversation.

    ``history`` is a list of ``{"role", "content"}`` messages. The result's
    ``newPreferences`` is only filled in once enough distinct kinds of signal
    were found to trust it.
    """
    text = " ".join(str(msg.get("content", "")) for msg in history or []).lower()
    detected = {}

    cuisines = [w for w in CUISINE_WORDS if w in text]
    if cuisines:
        detected["cuisine"] = cuisines

    atmospheres = [w for w in ATMOSPHERE_WORDS if w in text]
    if atmospheres:
        detected["atmosphere"] = atmospheres

    if any(w in text for w in BUDGET_WORDS):
        detected["priceRange"] = "budget"
    elif any(w in text for w in EXPENSIVE_WORDS):
        detected["priceRange"] = "expensive"

    confidence = min(len(detected) * CONFIDENCE_PER_SIGNAL, 1)
    return {
        "detectedPreferences": detected,
        "confidence": round(confidence, 2),
        "newPreferences": detected if confidence > CONFIDENCE_THRESHOLD else None,
    }


def time_of_day(hour):
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def contextual_suggestions(time_of_day, mood=None, purpose=None):
    suggestions = list(TIME_SUGGESTIONS.get(time_of_day, []))
    if mood:
        suggestions.extend(MOOD_SUGGESTIONS.get(mood.lower(), []))
    if purpose:
        suggestions.extend(PURPOSE_SUGGESTIONS.get(purpose.lower(), []))
    return suggestions[:MAX_SUGGESTIONS]


def quick_responses(context=None):
    responses = list(QUICK_RESPONSES)
    if context:
        responses = CONTEXT_QUICK_RESPONSES.get(context.lower(), []) + responses
    return responses[:MAX_QUICK_RESPONSES]

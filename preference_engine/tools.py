"""Tool definitions and handlers for agents that read and write preferences.

Each tool is a Claude tool_use function with a handler that runs against the
preference lifecycle manager on behalf of one authenticated user.
"""

import json

from .catalog import export_prompt_schema, search_catalog
from .errors import PreferenceError, ValidationError
from .lifecycle import PreferenceManager


# =============================================================================
# Tool Definitions (sent to Claude in the tools parameter)
# =============================================================================

TOOL_DEFINITIONS = [
    # --- Read tools ---
    {
        "name": "get_preference_schema",
        "description": "List every valid preference slug with its category, description, value type and enum options.",
        "input_schema": {
            "type": "object",
            "properties": {},
            "required": [],
        },
    },
    {
        "name": "search_preferences",
        "description": "Get the user's active preferences, optionally filtered by slug prefix, category or description keyword.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Slug prefix, category, or keyword (e.g. 'food', 'tone').",
                },
                "location_id": {
                    "type": "string",
                    "description": "Merge in preferences for this location (location values override global ones).",
                },
                "include_suggestions": {
                    "type": "boolean",
                    "description": "Also return pending suggestions awaiting the user's review.",
                },
            },
            "required": [],
        },
    },
    # --- Write tools ---
    {
        "name": "set_preference",
        "description": "Set a preference the user stated explicitly. Creates or overwrites the active value.",
        "input_schema": {
            "type": "object",
            "properties": {
                "slug": {
                    "type": "string",
                    "description": "Preference slug from the schema (e.g. 'food.dietary_restrictions').",
                },
                "value": {
                    "type": "string",
                    "description": "JSON-encoded value, e.g. '[\"peanuts\"]' for arrays or '\"casual\"' for strings.",
                },
                "location_id": {
                    "type": "string",
                    "description": "Required for location-scoped slugs, forbidden for global ones.",
                },
            },
            "required": ["slug", "value"],
        },
    },
    {
        "name": "suggest_preference",
        "description": "Propose an inferred preference for the user to review. Ignored if the user rejected it before.",
        "input_schema": {
            "type": "object",
            "properties": {
                "slug": {"type": "string", "description": "Preference slug from the schema."},
                "value": {"type": "string", "description": "JSON-encoded value."},
                "confidence": {"type": "number", "description": "Confidence between 0 and 1."},
                "location_id": {"type": "string", "description": "Location for location-scoped slugs."},
                "reason": {"type": "string", "description": "Brief explanation of why this was inferred."},
            },
            "required": ["slug", "value", "confidence"],
        },
    },
    {
        "name": "accept_suggestion",
        "description": "Accept a pending suggestion, making it the active value.",
        "input_schema": {
            "type": "object",
            "properties": {"preference_id": {"type": "string", "description": "Suggestion id."}},
            "required": ["preference_id"],
        },
    },
    {
        "name": "reject_suggestion",
        "description": "Reject a pending suggestion. It will not be suggested again.",
        "input_schema": {
            "type": "object",
            "properties": {"preference_id": {"type": "string", "description": "Suggestion id."}},
            "required": ["preference_id"],
        },
    },
    {
        "name": "delete_preference",
        "description": "Delete a stored preference by id.",
        "input_schema": {
            "type": "object",
            "properties": {"preference_id": {"type": "string", "description": "Preference id."}},
            "required": ["preference_id"],
        },
    },
]


def get_tool_definitions() -> list:
    """Return tool definitions for the Claude API tools parameter."""
    return TOOL_DEFINITIONS


# =============================================================================
# Helpers
# =============================================================================


def parse_json_value(value, context: str):
    """Parse a JSON-encoded tool argument, with a message the model can act on."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise ValueError(
            f'Invalid JSON in {context}: "{value}". '
            "Expected a valid JSON string like '[\"item1\", \"item2\"]' for arrays, "
            "'{\"key\": \"value\"}' for objects, or '\"text\"' for strings."
        )


# =============================================================================
# Read Tool Handlers
# =============================================================================


def execute_get_preference_schema(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    """Return the catalog as the model sees it."""
    schema = export_prompt_schema()
    print(f"[get_preference_schema] SUCCESS: {len(schema)} slugs", flush=True)
    return {"slugs": schema}


def execute_search_preferences(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    """Active preferences (plus optional suggestions) filtered by catalog match."""
    print(f"[search_preferences] Called: {params}", flush=True)
    location_id = params.get("location_id")
    active = manager.get_active_preferences(user_id, location_id)

    query = params.get("query")
    if query:
        matching = set(search_catalog(query))
        active = [p for p in active if p.slug in matching]

    result = {
        "preferences": [p.to_dict() for p in active],
        "count": len(active),
    }

    if params.get("include_suggestions"):
        suggested = manager.get_suggested_preferences(user_id, location_id)
        if query:
            suggested = [p for p in suggested if p.slug in matching]
        result["suggestions"] = [p.to_dict() for p in suggested]

    print(f"[search_preferences] SUCCESS: {len(active)} preferences", flush=True)
    return result


# =============================================================================
# Write Tool Handlers
# =============================================================================


def execute_set_preference(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    print(f"[set_preference] Called: {params.get('slug')}", flush=True)
    value = parse_json_value(params["value"], "value")
    preference = manager.set_preference(user_id, params["slug"], value, params.get("location_id"))
    print(f"[set_preference] SUCCESS: {preference.id}", flush=True)
    return {"success": True, "preference": preference.to_dict()}


def execute_suggest_preference(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    print(f"[suggest_preference] Called: {params.get('slug')}", flush=True)
    value = parse_json_value(params["value"], "value")
    evidence = {"reason": params["reason"]} if params.get("reason") else None
    preference = manager.suggest_preference(
        user_id,
        params["slug"],
        value,
        params.get("confidence"),
        params.get("location_id"),
        evidence,
    )
    if preference is None:
        print(f"[suggest_preference] SKIPPED: {params['slug']} was rejected before", flush=True)
        return {"success": True, "skipped": True, "reason": "previously_rejected"}

    print(f"[suggest_preference] SUCCESS: {preference.id}", flush=True)
    return {"success": True, "preference": preference.to_dict()}


def execute_accept_suggestion(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    print(f"[accept_suggestion] Called: {params.get('preference_id')}", flush=True)
    preference = manager.accept_suggestion(params["preference_id"], user_id)
    print(f"[accept_suggestion] SUCCESS: {preference.slug}", flush=True)
    return {"success": True, "preference": preference.to_dict()}


def execute_reject_suggestion(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    print(f"[reject_suggestion] Called: {params.get('preference_id')}", flush=True)
    manager.reject_suggestion(params["preference_id"], user_id)
    print("[reject_suggestion] SUCCESS", flush=True)
    return {"success": True}


def execute_delete_preference(params: dict, manager: PreferenceManager, user_id: str) -> dict:
    print(f"[delete_preference] Called: {params.get('preference_id')}", flush=True)
    preference = manager.delete_preference(params["preference_id"], user_id)
    print(f"[delete_preference] SUCCESS: {preference.slug}", flush=True)
    return {"success": True, "preference_id": preference.id}


# =============================================================================
# Tool Dispatcher
# =============================================================================

TOOL_HANDLERS = {
    # Read
    "get_preference_schema": execute_get_preference_schema,
    "search_preferences": execute_search_preferences,
    # Write
    "set_preference": execute_set_preference,
    "suggest_preference": execute_suggest_preference,
    "accept_suggestion": execute_accept_suggestion,
    "reject_suggestion": execute_reject_suggestion,
    "delete_preference": execute_delete_preference,
}


def execute_tool(tool_name: str, params: dict, manager: PreferenceManager, user_id: str) -> dict:
    """Dispatch a tool call to its handler.

    Returns a dict with either success data or an error message. Errors the
    model can correct (bad slug, bad value, missing argument) come back as
    ``{"error": ..., "TOOL_ERROR": True}`` instead of raising.
    """
    handler = TOOL_HANDLERS.get(tool_name)
    if not handler:
        print(f"[execute_tool] Unknown tool: {tool_name}", flush=True)
        return {"error": f"Unknown tool: {tool_name}", "TOOL_ERROR": True}

    try:
        return handler(params, manager, user_id)
    except (PreferenceError, ValueError) as e:
        print(f"[execute_tool] {tool_name} FAILED: {type(e).__name__}: {e}", flush=True)
        result = {"error": str(e), "TOOL_ERROR": True}
        if isinstance(e, ValidationError) and e.suggestions:
            result["did_you_mean"] = e.suggestions
        return result
    except KeyError as e:
        print(f"[execute_tool] {tool_name} FAILED: missing argument {e}", flush=True)
        return {"error": f"{tool_name} failed: missing required argument {e}", "TOOL_ERROR": True}

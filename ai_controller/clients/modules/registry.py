"""
Module Registry

Static metadata about the target modules and their main endpoints, used by
chain builders to discover what a step can call.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

from ...chains.models import ModuleType


@dataclass
class EndpointField:
    """A path/query parameter or body field of an endpoint"""
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


@dataclass
class ModuleEndpoint:
    """An endpoint a step can target"""
    path: str                   # May contain :param placeholders
    method: str
    description: str = ""
    params: List[EndpointField] = field(default_factory=list)
    body: List[EndpointField] = field(default_factory=list)


@dataclass
class ModuleMetadata:
    """Information about a target module"""
    name: str
    type: ModuleType
    port: int
    description: str
    endpoints: List[ModuleEndpoint] = field(default_factory=list)
    url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


def _modules() -> List[ModuleMetadata]:
    return [
        ModuleMetadata(
            name="Intent Interpreter",
            type=ModuleType.INTENT,
            port=3032,
            description="Intent classification and natural language understanding",
            endpoints=[
                ModuleEndpoint(
                    "/interpret", "POST", "Classify the intent of a user message",
                    body=[EndpointField("message", required=True, description="Message to interpret")],
                ),
                ModuleEndpoint(
                    "/interpret/batch", "POST", "Classify several messages",
                    body=[EndpointField("messages", "array", True, "Messages to interpret")],
                ),
            ],
        ),
        ModuleMetadata(
            name="Character Controller",
            type=ModuleType.CHARACTER,
            port=3031,
            description="Character sheet management with location integration",
            endpoints=[
                ModuleEndpoint(
                    "/process", "POST", "Process character input and return its context",
                    body=[
                        EndpointField("user_id", required=True, description="Owner of the character"),
                        EndpointField("user_character", required=True, description="Character name"),
                        EndpointField("input", required=True, description="User input or command"),
                        EndpointField("meta_data", "object", description="Extra data such as the classified intent"),
                    ],
                ),
                ModuleEndpoint(
                    "/character/:userId/:name", "GET", "Get a character sheet",
                    params=[
                        EndpointField("userId", required=True),
                        EndpointField("name", required=True, description="Character name"),
                    ],
                ),
                ModuleEndpoint(
                    "/characters/:userId", "GET", "List a user's characters",
                    params=[EndpointField("userId", required=True)],
                ),
                ModuleEndpoint(
                    "/check-name/:name", "GET", "Check whether a character name is taken",
                    params=[EndpointField("name", required=True)],
                ),
                ModuleEndpoint(
                    "/character/:userId/:name", "DELETE", "Delete a character",
                    params=[EndpointField("userId", required=True), EndpointField("name", required=True)],
                ),
            ],
        ),
        ModuleMetadata(
            name="Scene Controller",
            type=ModuleType.SCENE,
            port=3033,
            description="Locations and positions on an X/Y grid",
            endpoints=[
                ModuleEndpoint(
                    "/position/:entityId", "GET", "Current position of an entity",
                    params=[EndpointField("entityId", required=True)],
                ),
                ModuleEndpoint(
                    "/nearby", "GET", "Entities and locations near a point",
                    params=[
                        EndpointField("x", "number", True),
                        EndpointField("y", "number", True),
                        EndpointField("radius", "number"),
                    ],
                ),
                ModuleEndpoint(
                    "/move", "POST", "Move an entity",
                    body=[
                        EndpointField("entity_id", required=True),
                        EndpointField("x", "number", True),
                        EndpointField("y", "number", True),
                    ],
                ),
                ModuleEndpoint(
                    "/location/:locationId", "GET", "Get a location",
                    params=[EndpointField("locationId", required=True)],
                ),
                ModuleEndpoint(
                    "/location", "POST", "Create a location",
                    body=[EndpointField("name", required=True), EndpointField("description")],
                ),
            ],
        ),
        ModuleMetadata(
            name="Item Controller",
            type=ModuleType.ITEM,
            port=3034,
            description="Items and inventories with nested containers",
            endpoints=[
                ModuleEndpoint("/item", "POST", "Create an item", body=[EndpointField("name", required=True)]),
                ModuleEndpoint("/item/:id", "GET", "Get an item", params=[EndpointField("id", required=True)]),
                ModuleEndpoint("/item/:id", "PATCH", "Update an item", params=[EndpointField("id", required=True)]),
                ModuleEndpoint("/item/:id", "DELETE", "Delete an item", params=[EndpointField("id", required=True)]),
                ModuleEndpoint("/items/search", "GET", "Search items", params=[EndpointField("query")]),
                ModuleEndpoint(
                    "/item/:itemId/add-to-container", "POST", "Put an item into a container",
                    params=[EndpointField("itemId", required=True)],
                    body=[EndpointField("container_id", required=True)],
                ),
                ModuleEndpoint(
                    "/item/:containerId/contents", "GET", "Contents of a container",
                    params=[EndpointField("containerId", required=True)],
                ),
                ModuleEndpoint(
                    "/item/:itemId/weight", "GET", "Total weight of an item and its contents",
                    params=[EndpointField("itemId", required=True)],
                ),
            ],
        ),
        ModuleMetadata(
            name="StoryTeller",
            type=ModuleType.STORYTELLER,
            port=3037,
            description="Narrative generation with contextual storytelling",
            endpoints=[
                ModuleEndpoint(
                    "/generate", "POST", "Generate a narrative response",
                    body=[
                        EndpointField("user_id", required=True),
                        EndpointField("player_input", required=True),
                        EndpointField("character_id", "number"),
                    ],
                ),
                ModuleEndpoint(
                    "/interactions/:user_id", "GET", "Interaction history of a user",
                    params=[EndpointField("user_id", required=True), EndpointField("limit", "number")],
                ),
                ModuleEndpoint("/templates", "GET", "List story templates"),
                ModuleEndpoint(
                    "/templates/:name", "GET", "Get a story template",
                    params=[EndpointField("name", required=True)],
                ),
                ModuleEndpoint(
                    "/templates", "POST", "Create or update a story template",
                    body=[EndpointField("name", required=True), EndpointField("content", required=True)],
                ),
                ModuleEndpoint(
                    "/templates/:id", "DELETE", "Delete a story template",
                    params=[EndpointField("id", "number", True)],
                ),
                ModuleEndpoint("/cache/clear", "POST", "Clear the response cache"),
            ],
        ),
    ]


def get_modules(module_urls: Mapping[str, str]) -> List[ModuleMetadata]:
    """
    Metadata for every target module

    Args:
        module_urls: Configured base URL per module name

    Returns:
        List of ModuleMetadata with ``url`` filled from configuration
    """
    modules = _modules()
    for module in modules:
        module.url = module_urls.get(module.type.value, f"http://localhost:{module.port}")
    return modules


def get_module(name: str, module_urls: Mapping[str, str]) -> Optional[ModuleMetadata]:
    """Metadata for one module by type ("intent") or display name, None if unknown"""
    lowered = name.strip().lower()
    for module in get_modules(module_urls):
        if module.type.value == lowered or module.name.lower() == lowered:
            return module
    return None

import re

PLACEHOLDER_IMG = "icons/svg/mystery-man.svg"
ACTOR_TYPES = {"character", "npc"}

# system.* fields where 0 / "0" means "left unset" rather than "exactly zero".
SENTINEL_FIELDS = [
    ("activation", "cost"),
    ("duration", "value"),
    ("target", "value"),
    ("target", "width"),
    ("range", "value"),
    ("range", "long"),
    ("uses", "value"),
    ("uses", "max"),
    ("save", "dc"),
    ("capacity", "value"),
    ("strength",),
]

JOINER_RE = re.compile("[\u2060\u200d]")
SINGLE_QUOTES_RE = re.compile("[\u2018\u2019]")
DOUBLE_QUOTES_RE = re.compile("[\u201c\u201d]")


def clean_string(value: str) -> str:
    if not isinstance(value, str):
        return value
    value = JOINER_RE.sub("", value)
    value = SINGLE_QUOTES_RE.sub("'", value)
    value = DOUBLE_QUOTES_RE.sub('"', value)
    return value.strip()


def _is_zero(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0


def _clear_sentinels(system: dict) -> None:
    for path in SENTINEL_FIELDS:
        *parents, key = path
        node = system
        for part in parents:
            node = node.get(part) if isinstance(node, dict) else None
        if not isinstance(node, dict) or key not in node:
            continue
        if _is_zero(node[key]):
            node[key] = None
        elif node[key] == "0":
            node[key] = ""


def _clear_placeholder_images(data: dict) -> None:
    if data.get("type") not in ACTOR_TYPES or data.get("img") != PLACEHOLDER_IMG:
        return
    data["img"] = ""
    texture = (data.get("prototypeToken") or {}).get("texture")
    if isinstance(texture, dict):
        texture["src"] = ""


def clean_pack_entry(data: dict, clear_source_id: bool = True, ownership: int = 0) -> None:
    """Rewrite one compendium document in place into its distributable form.

    Nested effects and items keep their source stamps; nested journal pages
    are locked from default view. Running it twice changes nothing.
    """
    if data.get("ownership"):
        data["ownership"] = {"default": ownership}

    flags = data.get("flags")
    if clear_source_id:
        stats = data.get("_stats")
        if isinstance(stats, dict):
            stats.pop("compendiumSource", None)
        if isinstance(flags, dict) and isinstance(flags.get("core"), dict):
            flags["core"].pop("sourceId", None)
    if isinstance(flags, dict):
        flags.pop("importSource", None)
        flags.pop("exportSource", None)

    system = data.get("system")
    if isinstance(system, dict):
        _clear_sentinels(system)

    _clear_placeholder_images(data)

    for effect in data.get("effects") or []:
        clean_pack_entry(effect, clear_source_id=False)
    for item in data.get("items") or []:
        clean_pack_entry(item, clear_source_id=False)
    for page in data.get("pages") or []:
        clean_pack_entry(page, ownership=-1)

    description = system.get("description") if isinstance(system, dict) else None
    if isinstance(description, dict) and description.get("value"):
        description["value"] = clean_string(description["value"])
    if data.get("label"):
        data["label"] = clean_string(data["label"])
    if data.get("name"):
        data["name"] = clean_string(data["name"])

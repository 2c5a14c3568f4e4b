"""
PC Builder assistant

Formats the in-stock catalog into a prompt, asks an OpenAI-compatible chat
model (Groq by default) for component recommendations and maps the free-text
reply back onto catalog products. When no model is configured, or the model
keeps failing, a canned recommendation with a locally filtered product list
is returned instead.
"""
import logging
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_API_URL = os.getenv("GROQ_API_URL", "https://api.groq.com/openai/v1")
GROQ_MODEL = os.getenv("GROQ_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct")
CATALOG_TTL = float(os.getenv("CHATBOT_CATALOG_TTL", "300"))
RESPONSE_TTL = float(os.getenv("CHATBOT_RESPONSE_TTL", "600"))
MAX_ATTEMPTS = int(os.getenv("CHATBOT_MAX_ATTEMPTS", "3"))
MAX_PRODUCTS = 6

SYSTEM_PROMPT = """\
You are NeuraRig's PC building assistant. Recommend computer components for the user's needs \
(gaming, content creation, office work, ...), only from the inventory listed below.
Refer to every product you recommend by its id in square brackets, e.g. [64b7f0c2a1e4d93b8c0f1a2b].
Explain briefly why each component fits, respect the user's budget, and keep your suggestions \
compatible with the components the user has already selected.

Inventory:
{inventory}
"""

FALLBACK_RESPONSES = {
    "gaming": (
        "For a gaming PC, prioritise the graphics card, then a modern 6-8 core CPU, "
        "16-32GB of fast RAM and a 1TB NVMe SSD for your game library."
    ),
    "budget": (
        "For a budget build, a 6-core CPU with a mid-range graphics card, 16GB of RAM "
        "and a 500GB NVMe SSD gives good 1080p performance without overspending."
    ),
    "workstation": (
        "For a workstation, favour a high core-count CPU, 64GB of RAM, a GPU with plenty "
        "of VRAM and fast NVMe storage for project files."
    ),
    "streaming": (
        "For streaming, pair an 8-core CPU with a graphics card that has a hardware encoder, "
        "32GB of RAM and a separate drive for recordings."
    ),
    "office": (
        "For office and productivity work, a CPU with integrated graphics, 16GB of RAM "
        "and a 500GB SSD is plenty."
    ),
    "default": (
        "I can recommend PC components based on your needs. What will you be using your PC for? "
        "Gaming, content creation, office work, or something else? Do you have a budget in mind?"
    ),
}

USE_CASE_KEYWORDS = [
    ("gaming", ("gaming", "game", "fps")),
    ("budget", ("budget", "cheap", "affordable")),
    ("workstation", ("work", "render", "3d", "video", "editing")),
    ("streaming", ("stream", "content", "youtube", "twitch")),
    ("office", ("office", "productivity", "browsing", "email")),
]

CATEGORY_ALIASES = {
    "gpu": "graphic",
    "graphics card": "graphic",
    "video card": "graphic",
    "cpu": "processor",
    "processor": "processor",
    "ram": "memory",
    "memory": "memory",
    "ssd": "storage",
    "hdd": "storage",
    "storage": "storage",
    "motherboard": "motherboard",
    "mobo": "motherboard",
    "psu": "power",
    "power supply": "power",
    "cooler": "cool",
    "cooling": "cool",
    "monitor": "monitor",
    "keyboard": "keyboard",
    "mouse": "mouse",
    "laptop": "laptop",
}

_OBJECT_ID_RE = re.compile(r"\b([0-9a-fA-F]{24})\b")
_BUDGET_RE = re.compile(
    r"(?:under|below|less than|up to|max(?:imum)?|budget(?:\s+of)?(?:\s+is)?)\s*\$?\s*(\d[\d,]*(?:\.\d+)?)\s*(k)?\b"
    r"|\$\s*(\d[\d,]*(?:\.\d+)?)\s*(k)?\b",
    re.IGNORECASE,
)


class TTLCache:
    """Key/value store whose entries expire a fixed time after being set."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[Any, tuple] = {}

    def get(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            return None
        return value

    def set(self, key, value) -> None:
        self._entries[key] = (self.clock() + self.ttl, value)

    def clear(self) -> None:
        self._entries.clear()


def build_llm():
    if not GROQ_API_KEY:
        logger.info("GROQ_API_KEY not set; PC builder runs on local fallbacks only")
        return None
    return ChatOpenAI(
        model=GROQ_MODEL,
        api_key=GROQ_API_KEY,
        base_url=GROQ_API_URL,
        timeout=30,
        max_retries=0,
        temperature=0.4,
    )


def _category_name(product: dict) -> str:
    category = product.get("category")
    if isinstance(category, dict):
        return category.get("name") or ""
    return ""


def _brand_name(product: dict) -> str:
    brand = product.get("brand")
    if isinstance(brand, dict):
        return brand.get("name") or ""
    return ""


def format_inventory(catalog: List[dict]) -> str:
    lines = []
    for p in catalog:
        lines.append(
            f"[{p['id']}] {p['name']} | {_category_name(p) or 'Uncategorized'} | "
            f"{_brand_name(p) or 'Unbranded'} | ${p.get('price', 0):.2f} | stock {p.get('stock', 0)}"
        )
    return "\n".join(lines) or "(no products in stock)"


def build_messages(query: str, catalog: List[dict], selected: Dict[str, dict]) -> list:
    content = query
    if selected:
        parts = [f"- {slot.upper()}: {p['name']} (${p.get('price', 0):.2f})" for slot, p in selected.items()]
        content += "\n\nCurrently selected components:\n" + "\n".join(parts)
    return [
        SystemMessage(content=SYSTEM_PROMPT.format(inventory=format_inventory(catalog))),
        HumanMessage(content=content),
    ]


def classify_use_case(query: str) -> str:
    text = query.lower()
    for use_case, keywords in USE_CASE_KEYWORDS:
        if any(k in text for k in keywords):
            return use_case
    return "default"


def parse_budget(query: str) -> Optional[float]:
    match = _BUDGET_RE.search(query)
    if not match:
        return None
    amount = match.group(1) or match.group(3)
    thousands = match.group(2) or match.group(4)
    value = float(amount.replace(",", ""))
    return value * 1000 if thousands else value


def detect_categories(text: str, catalog: List[dict]) -> List[str]:
    """Names of catalog categories mentioned in ``text``, directly or through a common alias."""
    lowered = text.lower()
    aliases = [frag for alias, frag in CATEGORY_ALIASES.items() if re.search(rf"\b{re.escape(alias)}\b", lowered)]
    found = []
    for p in catalog:
        category = p.get("category")
        if not isinstance(category, dict):
            continue
        name = (category.get("name") or "").lower()
        slug = (category.get("slug") or "").lower()
        if not name or category["name"] in found:
            continue
        mentioned = re.search(rf"\b{re.escape(name)}\b", lowered) or (slug and re.search(rf"\b{re.escape(slug)}\b", lowered))
        if mentioned or any(frag in name or frag in slug for frag in aliases):
            found.append(category["name"])
    return found


def extract_product_ids(text: str, catalog: List[dict]) -> List[str]:
    """Catalog ids referenced in ``text``; falls back to product names when no id is present."""
    known = {p["id"] for p in catalog}
    ids = []
    for match in _OBJECT_ID_RE.finditer(text):
        pid = match.group(1).lower()
        if pid in known and pid not in ids:
            ids.append(pid)
    if ids:
        return ids

    lowered = text.lower()
    hits = []
    for p in catalog:
        pos = lowered.find(p["name"].lower())
        if pos != -1:
            hits.append((pos, p["id"]))
    return [pid for _, pid in sorted(hits)]


def select_products(catalog: List[dict], categories: Optional[List[str]] = None,
                    budget: Optional[float] = None, limit: int = MAX_PRODUCTS) -> List[dict]:
    items = [p for p in catalog if p.get("stock", 0) > 0]
    if budget is not None:
        items = [p for p in items if p.get("price", 0) <= budget]
    if categories:
        items = [p for p in items if _category_name(p) in categories]
    items.sort(key=lambda p: (not p.get("featured", False), -p.get("rating", 0), p.get("price", 0)))
    if not categories:
        seen = set()
        picked = []
        for p in items:
            key = _category_name(p)
            if key in seen:
                continue
            seen.add(key)
            picked.append(p)
        items = picked
    return items[:limit]


def fallback_recommendation(query: str, catalog: List[dict]) -> dict:
    categories = detect_categories(query, catalog)
    products = select_products(catalog, categories, parse_budget(query))
    message = FALLBACK_RESPONSES[classify_use_case(query)]
    if products:
        listing = "\n".join(f"- {p['name']} (${p.get('price', 0):.2f})" for p in products)
        message += "\n\nFrom our current inventory:\n" + listing
    return {"message": message, "products": products, "categories": categories, "source": "fallback"}


class PcBuilderAssistant:
    def __init__(self, llm=None, catalog_ttl: float = CATALOG_TTL, response_ttl: float = RESPONSE_TTL,
                 max_attempts: int = MAX_ATTEMPTS, base_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic):
        self.llm = llm
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.sleep = sleep
        self._catalog = TTLCache(catalog_ttl, clock)
        self._responses = TTLCache(response_ttl, clock)

    def clear_cache(self) -> None:
        self._catalog.clear()
        self._responses.clear()

    def catalog(self, loader: Callable[[], List[dict]]) -> List[dict]:
        products = self._catalog.get("catalog")
        if products is None:
            products = loader()
            self._catalog.set("catalog", products)
        return products

    def _invoke_with_retry(self, messages: list) -> str:
        last_error = None
        for attempt in range(self.max_attempts):
            try:
                reply = self.llm.invoke(messages)
                return reply.content if isinstance(reply.content, str) else str(reply.content)
            except Exception as exc:
                last_error = exc
                if attempt + 1 < self.max_attempts:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning("LLM call failed (attempt %d/%d): %s; retrying in %.1fs",
                                   attempt + 1, self.max_attempts, exc, delay)
                    self.sleep(delay)
        raise last_error

    def _from_reply(self, reply: str, catalog: List[dict]) -> dict:
        by_id = {p["id"]: p for p in catalog}
        products = [by_id[pid] for pid in extract_product_ids(reply, catalog)][:MAX_PRODUCTS]
        categories = detect_categories(reply, catalog)
        if not products and categories:
            products = select_products(catalog, categories)
        return {"message": reply, "products": products, "categories": categories, "source": "llm"}

    def recommend(self, query: str, selected: Dict[str, dict], loader: Callable[[], List[dict]]) -> dict:
        query = " ".join(query.split())
        key = (query.lower(), tuple(sorted((slot, p.get("id")) for slot, p in selected.items())))
        cached = self._responses.get(key)
        if cached is not None:
            return {**cached, "source": "cache"}

        catalog = self.catalog(loader)
        if self.llm is not None:
            try:
                reply = self._invoke_with_retry(build_messages(query, catalog, selected))
            except Exception as exc:
                logger.error("LLM unavailable after %d attempts, using fallback: %s", self.max_attempts, exc)
            else:
                result = self._from_reply(reply, catalog)
                self._responses.set(key, result)
                return result
        return fallback_recommendation(query, catalog)

    def ping(self) -> bool:
        if self.llm is None:
            return False
        try:
            self.llm.invoke([HumanMessage(content="Reply with OK.")])
        except Exception as exc:
            logger.warning("LLM ping failed: %s", exc)
            return False
        return True

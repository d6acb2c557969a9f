"""Recommendation context building and generation.

Contexts are plain text summaries of the catalog, purchase history and sales
handed to an external chat-completion model. The model's reply is untrusted:
anything that does not validate against the per-role schema yields an empty
list rather than an error.
"""

from __future__ import annotations

import json
import logging
import re
from decimal import Decimal
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ExternalServiceError, ValidationError
from .metrics import STORE_RECOMMENDATION_REQUESTS_TOTAL, normalise_recommendation_outcome
from .money import from_cents
from .repository import InventoryRepository, OrderRepository
from .sales import UNKNOWN_CATEGORY, UNKNOWN_ITEM_NAME, SalesAggregator, classify_item
from .schemas import ClientRecommendation, OwnerRecommendation

logger = logging.getLogger(__name__)

Role = Literal["client", "owner"]

NO_PURCHASES = "No previous purchases."
NO_SALES = "No sales data yet."
TRUNCATION_MARKER = "\n[context truncated]"

_FENCE_RE = re.compile(r"```(?:json)?\n?")

CLIENT_PROMPT = """You are a smart shopping assistant for an inventory/e-commerce store.

Based on this customer's purchase history and the full product catalog, recommend 3-5 items. Rules:
- If they bought something before and it's back in stock, DEFINITELY recommend buying it again (they clearly like it).
- Also recommend items from the same category or that complement their past purchases.
- If something is out of stock, skip it.
- If they have no purchase history, recommend popular or best-value items.
- For each recommendation, explain briefly WHY.

{context}

Respond ONLY with a valid JSON array. Each element:
- "item_name": string (exact name from catalog)
- "item_id": string (the id from catalog)
- "reason": string (1-2 sentence explanation)
- "price": number"""

OWNER_PROMPT = """You are a business intelligence assistant for an inventory store owner.

Based on the sales data and current stock levels, provide 5-8 recommendations split into TWO categories:

RESTOCK existing items:
- Items that sold well and need restocking (especially OUT OF STOCK or LOW STOCK)
- Items running low relative to demand

NEW PRODUCT IDEAS:
- Based on what categories and products sell best, suggest NEW products the owner does NOT currently have in stock that would likely sell well.
- Think about related or complementary products and be specific with product names, not just categories.

{context}

Respond ONLY with a valid JSON array. Each element:
- "item_name": string (product name - either existing item OR new product idea)
- "reason": string (2-3 sentence business rationale with numbers if applicable)
- "priority": "high" | "medium" | "low"
- "current_stock": number | null (null for new product ideas)
- "type": "restock" | "new_product"
"""

_ADAPTERS: dict[str, TypeAdapter[Any]] = {
    "client": TypeAdapter(list[ClientRecommendation]),
    "owner": TypeAdapter(list[OwnerRecommendation]),
}


def parse_role(value: str | None) -> Role:
    role = (value or "").strip().lower()
    if role not in _ADAPTERS:
        raise ValidationError("Invalid role")
    return role  # type: ignore[return-value]


def _money(value: Decimal) -> str:
    return f"${value:.2f}"


def truncate_context(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER


class ContextBuilder:
    """Renders the text context the generator sees for each role."""

    def __init__(
        self,
        orders: OrderRepository,
        inventory: InventoryRepository,
        *,
        max_chars: int = 12000,
    ) -> None:
        self.orders = orders
        self.inventory = inventory
        self.max_chars = max_chars

    async def build_client_context(self, client_id: str) -> str:
        catalog = await self.inventory.list_items()
        by_id = {item.id: item for item in catalog}
        purchases = await self.orders.lines_for_client(client_id)

        if purchases:
            history_lines = []
            for line in purchases:
                item = by_id.get(line.item_id)
                name = item.name if item is not None else UNKNOWN_ITEM_NAME
                category = item.category if item is not None else UNKNOWN_CATEGORY
                history_lines.append(
                    f"- {name} ({category}) x{line.quantity} @ {_money(from_cents(line.unit_price_cents))}"
                )
            history = "Customer's purchase history:\n" + "\n".join(history_lines)
        else:
            history = NO_PURCHASES

        catalog_lines = []
        for item in catalog:
            stock = "OUT OF STOCK" if item.quantity <= 0 else f"{item.quantity} in stock"
            catalog_lines.append(
                f'- [{item.id}] {item.name} ({item.category}) - {_money(from_cents(item.price_cents))}'
                f' - "{item.description}" - {stock}'
            )

        text = f"{history}\n\nFull catalog (only recommend in-stock items):\n" + "\n".join(catalog_lines)
        return truncate_context(text, self.max_chars)

    async def build_owner_context(self) -> str:
        ranked = await SalesAggregator(self.orders, self.inventory).ranked_sales()
        if ranked:
            sales_lines = "\n".join(
                f"- {entry.item_name} ({entry.category}): {entry.units_sold} units sold,"
                f" {_money(entry.revenue)} revenue"
                for entry in ranked
            )
            total_orders = await self.orders.count_orders()
            sales = f"Sales breakdown (by units sold):\n{sales_lines}\n\nTotal orders: {total_orders}"
        else:
            sales = NO_SALES

        stock_lines = "\n".join(
            f"- {item.name} ({item.category}): {item.quantity} in stock"
            f" (min: {item.minimum_stock_threshold}) [{classify_item(item).label}]"
            f" @ {_money(from_cents(item.price_cents))}"
            for item in await self.inventory.list_items()
        )
        text = f"{sales}\n\nCurrent inventory:\n{stock_lines}"
        return truncate_context(text, self.max_chars)


def _parse(role: Role, content: str | None) -> tuple[list[BaseModel], str]:
    if not content or not content.strip():
        return [], "empty"
    cleaned = _FENCE_RE.sub("", content).replace("```", "").strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Recommendation reply for %s was not JSON", role)
        return [], "malformed"
    try:
        recommendations = _ADAPTERS[role].validate_python(payload)
    except PydanticValidationError as exc:
        logger.warning("Recommendation reply for %s failed validation: %s errors", role, exc.error_count())
        return [], "malformed"
    return recommendations, "ok" if recommendations else "empty"


def parse_recommendations(role: Role, content: str | None) -> list[BaseModel]:
    """Validate a generator reply; anything malformed degrades to ``[]``."""

    recommendations, _ = _parse(role, content)
    return recommendations


class RecommendationClientProtocol(Protocol):
    async def complete(self, prompt: str) -> str | None:
        ...


class RecommendationClient:
    """Posts chat-completion requests to an OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        api_url: str,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def close(self) -> None:
        await self._client.aclose()

    async def complete(self, prompt: str) -> str | None:
        if not self._api_key:
            raise ExternalServiceError("recommendation api key is not configured")
        try:
            response = await self._client.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self._temperature,
                    "max_tokens": self._max_tokens,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"AI service error: {exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"AI service error: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Recommendation service returned an unexpected envelope")
            return None


class RecommendationService:
    def __init__(self, builder: ContextBuilder, client: RecommendationClientProtocol) -> None:
        self.builder = builder
        self.client = client

    async def recommend(self, role: Role, user_id: str) -> list[BaseModel]:
        if role == "client":
            prompt = CLIENT_PROMPT.format(context=await self.builder.build_client_context(user_id))
        else:
            prompt = OWNER_PROMPT.format(context=await self.builder.build_owner_context())

        try:
            content = await self.client.complete(prompt)
        except ExternalServiceError:
            self._count(role, "upstream_error")
            raise

        recommendations, outcome = _parse(role, content)
        self._count(role, outcome)
        logger.info("Generated %s %s recommendations for %s", len(recommendations), role, user_id)
        return recommendations

    @staticmethod
    def _count(role: str, outcome: str) -> None:
        STORE_RECOMMENDATION_REQUESTS_TOTAL.labels(
            role=role, outcome=normalise_recommendation_outcome(outcome)
        ).inc()

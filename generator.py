"""AI product generation: one chat call per batch, optional image per product."""
import json
import re
from typing import List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from openai import OpenAI
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from config import Settings
from errors import GenerationError
from logging_config import get_logger
from schemas import NewProduct, NonEmptyStr, PriceRange, to_money

logger = get_logger(__name__)

GENERATION_SYSTEM_PROMPT = """\
You write product listings for small online stores.

Reply with a single JSON object in a ```json code block and nothing else.
The object has one key, "products": a list of product objects, each with
"name" (string), "description" (string, two or three sentences),
"price" (number) and "stock" (integer).
"""

GENERATION_USER_PROMPT = """\
Create exactly {count} distinct products for a {category} store.
Every price must be between {min_price} and {max_price}.
"""

IMAGE_PROMPT = "Studio product photo on a plain background: {name}. {description}"


class GeneratedProduct(BaseModel):
    name: NonEmptyStr
    description: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    stock: int = Field(10, ge=0)


_PRODUCT_LIST = TypeAdapter(List[GeneratedProduct])


def _message_text(content) -> str:
    if isinstance(content, str):
        return content
    return "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)


def parse_products(text: str) -> List[GeneratedProduct]:
    """Pull the product list out of a model reply.

    Accepts a fenced ```json block or bare JSON, either `{"products": [...]}`
    or a top-level list. Raises `GenerationError` when nothing usable is found.
    """
    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", text, re.DOTALL)
    raw = fenced.group(1) if fenced else text
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"[\[{].*[\]}]", raw, re.DOTALL)
        if not match:
            raise GenerationError("AI reply did not contain JSON")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise GenerationError(f"AI reply is not valid JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("products")
    if not isinstance(data, list):
        raise GenerationError("AI reply has no product list")
    try:
        return _PRODUCT_LIST.validate_python(data)
    except ValidationError as exc:
        raise GenerationError(f"AI reply has malformed products: {exc.error_count()} errors") from exc


class ProductGenerator:
    def __init__(self, chat_model: Optional[BaseChatModel] = None, image_client=None, image_model: str = "dall-e-3"):
        self.chat_model = chat_model
        self.image_client = image_client
        self.image_model = image_model

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProductGenerator":
        if not settings.ai_configured:
            return cls()
        chat_model = ChatOpenAI(model=settings.openai_model, api_key=settings.openai_api_key)
        image_client = OpenAI(api_key=settings.openai_api_key)
        return cls(chat_model, image_client, settings.openai_image_model)

    @property
    def configured(self) -> bool:
        return self.chat_model is not None

    def generate(self, store_id: str, category: str, count: int, price_range: PriceRange, with_images: bool = False) -> List[NewProduct]:
        if not self.configured:
            raise GenerationError("AI generation is not configured")

        messages = [
            SystemMessage(content=GENERATION_SYSTEM_PROMPT),
            HumanMessage(content=GENERATION_USER_PROMPT.format(
                count=count,
                category=category,
                min_price=price_range.min,
                max_price=price_range.max,
            )),
        ]
        try:
            reply = self.chat_model.invoke(messages)
        except Exception as exc:
            logger.error("generation_request_failed", category=category, error=str(exc))
            raise GenerationError("AI request failed") from exc

        items = parse_products(_message_text(reply.content))
        if len(items) < count:
            raise GenerationError(f"AI returned {len(items)} products, expected {count}")

        products = []
        for item in items[:count]:
            price = to_money(min(max(to_money(item.price), price_range.min), price_range.max))
            image_url = self._image_for(item) if with_images else None
            try:
                product = NewProduct(
                    store_id=store_id,
                    name=item.name,
                    description=item.description,
                    price=price,
                    category=category,
                    image_url=image_url,
                    stock=item.stock,
                    ai_generated=True,
                )
            except ValidationError as exc:
                raise GenerationError(f"AI product {item.name!r} is invalid: {exc.error_count()} errors") from exc
            products.append(product)
        logger.info("products_generated", store_id=store_id, category=category, count=len(products))
        return products

    def _image_for(self, item: GeneratedProduct) -> str:
        if self.image_client is None:
            raise GenerationError("Image generation is not configured")
        prompt = IMAGE_PROMPT.format(name=item.name, description=item.description or "")
        try:
            result = self.image_client.images.generate(model=self.image_model, prompt=prompt, n=1, size="1024x1024")
            return result.data[0].url
        except Exception as exc:
            logger.error("image_request_failed", product=item.name, error=str(exc))
            raise GenerationError("AI image request failed") from exc

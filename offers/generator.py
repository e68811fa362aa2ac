import json
import logging
import os
import re
from typing import Optional

from groq import Groq
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert marketing assistant for a loyalty program.
Generate one personalized offer for a member based on their purchase history and preferences,
and explain the reasoning behind the offer.

Return ONLY valid JSON with this schema, no explanations:
{
    "offer": "the personalized offer text",
    "reasoning": "why this offer fits the member"
}"""


class OfferInput(BaseModel):
    user_id: str
    purchase_history: str = ""
    preferences: str = ""


class PersonalizedOffer(BaseModel):
    offer: str
    reasoning: str
    source: str = Field(default="local", description="groq or local")


# (keywords, offer, reasoning) checked in order by the local generator
_LOCAL_OFFERS = [
    (("coffee", "latte", "espresso", "cappuccino"),
     "Get 2x points on your next three coffee drinks this week.",
     "Coffee shows up repeatedly in the purchase history."),
    (("tea", "matcha", "chai"),
     "Enjoy a free size upgrade on any tea drink.",
     "The member regularly orders tea."),
    (("pastry", "croissant", "muffin", "cake", "cookie", "dessert", "sweet"),
     "Add a pastry to any order for half price this weekend.",
     "The member has shown interest in baked goods."),
    (("sandwich", "lunch", "salad", "bowl", "meal"),
     "Earn 30 bonus points on any lunch combo before 2pm.",
     "Lunch items make up a large part of recent visits."),
    (("vegan", "vegetarian", "plant", "oat"),
     "Try a plant-based special and earn 25 bonus points.",
     "The stated preferences point toward plant-based options."),
]


class OfferGenerator:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or os.getenv("GROQ_API_KEY")
        self.client = None
        self.model = model or "llama-3.3-70b-versatile"

        if self.api_key:
            self.client = Groq(api_key=self.api_key)

    @property
    def is_available(self) -> bool:
        return self.client is not None

    def generate(self, request: OfferInput) -> PersonalizedOffer:
        if self.client:
            offer = self._generate_with_groq(request)
            if offer is not None:
                return offer
        return self._generate_locally(request)

    def _generate_with_groq(self, request: OfferInput) -> Optional[PersonalizedOffer]:
        prompt = (
            f"User ID: {request.user_id}\n"
            f"Purchase History: {request.purchase_history or 'none'}\n"
            f"Preferences: {request.preferences or 'none'}"
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt}
                ],
                temperature=0.7,
                max_tokens=512
            )
        except Exception as e:
            logger.warning("Groq offer generation failed for user %s: %s", request.user_id, e)
            return None

        data = self._extract_json(response.choices[0].message.content or "")
        if not data.get("offer"):
            logger.warning("Groq returned no usable offer for user %s", request.user_id)
            return None
        return PersonalizedOffer(
            offer=str(data["offer"]),
            reasoning=str(data.get("reasoning", "")),
            source="groq",
        )

    def _extract_json(self, text: str) -> dict:
        json_match = re.search(r'\{[\s\S]*\}', text)
        if json_match:
            try:
                return json.loads(json_match.group())
            except json.JSONDecodeError:
                pass
        return {}

    def _generate_locally(self, request: OfferInput) -> PersonalizedOffer:
        text_lower = f"{request.purchase_history} {request.preferences}".lower()

        for keywords, offer, reasoning in _LOCAL_OFFERS:
            if any(re.search(rf"\b{k}", text_lower) for k in keywords):
                return PersonalizedOffer(offer=offer, reasoning=reasoning)

        if request.purchase_history.strip():
            return PersonalizedOffer(
                offer="Earn 50 bonus points on your next visit.",
                reasoning="A general thank-you for a returning member.",
            )
        return PersonalizedOffer(
            offer="Make your first purchase this week and earn double points.",
            reasoning="No purchase history yet, so the offer encourages a first visit.",
        )

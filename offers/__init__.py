"""
Personalized Offers

Generates offer text for loyalty members from their purchase history,
using the Groq chat-completion API when a key is configured.
"""

from .generator import OfferGenerator, OfferInput, PersonalizedOffer

__all__ = [
    "OfferGenerator",
    "OfferInput",
    "PersonalizedOffer",
]

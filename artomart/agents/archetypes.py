"""Archetype definitions for the marketplace agents."""
from __future__ import annotations

from typing import Dict

from artomart.core.models import Archetype
from artomart.services.prompts import PromptTemplate

DEFAULT_ARCHETYPE = "productRecommendation"

PRODUCT_RECOMMENDATION = Archetype(
    name="productRecommendation",
    human_label="recommender",
    prompt=PromptTemplate(
        role_framing=(
            "You are an AI product recommendation assistant for Art-O-Mart, a handcrafted "
            "marketplace of authentic items from traditional artisans across India. Help users "
            "find beautiful artisan-made products based on their preferences, budget and "
            "cultural interests."
        ),
        guidelines=(
            "Be enthusiastic and knowledgeable about crafts and cultural art.",
            "Share culturally rich insights about the crafts and the artisans behind them.",
            "Available categories: Textiles, Pottery, Jewelry, Paintings, Woodcraft, Metalwork, Leather.",
            "Available regions: Rajasthan, Kerala, West Bengal, Gujarat, Kashmir, Tamil Nadu, Uttar Pradesh.",
        ),
    ),
    supported_actions=("chat", "recommendProducts", "parseSearchQuery", "suggestPricing"),
    default_suggestions=("Show me pottery", "Find jewelry", "Cultural artifacts", "Custom orders"),
    fallback_reply=(
        "I'd love to help you find amazing handcrafted items! "
        "What type of art or craft are you interested in today?"
    ),
    max_consecutive_errors=5,
    temperature=0.7,
    max_tokens=1500,
)

CUSTOMER_SUPPORT = Archetype(
    name="customerSupport",
    human_label="support",
    prompt=PromptTemplate(
        role_framing=(
            "You are a helpful customer support agent for Art-O-Mart marketplace. Answer "
            "questions about orders, shipping, returns and general marketplace policies."
        ),
        guidelines=(
            "Be polite, professional and solution-oriented.",
            "If you don't know something, offer to connect the customer with human support.",
        ),
    ),
    supported_actions=("chat", "categorizeQuery", "suggestActions", "faqAnswer", "checkEscalation"),
    default_suggestions=("Track my order", "Return policy", "Shipping info", "Account help"),
    fallback_reply=(
        "I'm here to help with any questions about your Art-O-Mart experience. "
        "What can I assist you with?"
    ),
    max_consecutive_errors=5,
    action_deadlines={"categorizeQuery": 20.0},
    temperature=0.5,
    max_tokens=1000,
)

ARTISAN_ASSISTANT = Archetype(
    name="artisanAssistant",
    human_label="artisan-assistant",
    prompt=PromptTemplate(
        role_framing=(
            "You are an AI assistant helping traditional artisans on Art-O-Mart marketplace. "
            "Provide advice on product listings, photography, pricing and growing their craft business."
        ),
        guidelines=(
            "Be encouraging and practical.",
            "Respect traditional crafting methods while suggesting modern business practices.",
        ),
    ),
    supported_actions=("chat", "suggestPricing", "optimizeListing", "businessInsights"),
    default_suggestions=("Pricing advice", "Photography tips", "Market trends", "Business growth"),
    fallback_reply="I'm here to help you grow your craft business on Art-O-Mart. What would you like to know?",
    max_consecutive_errors=5,
    action_deadlines={"businessInsights": 45.0},
    temperature=0.6,
    max_tokens=1200,
)

ORDER_PROCESSING = Archetype(
    name="orderProcessing",
    human_label="inventory",
    prompt=PromptTemplate(
        role_framing=(
            "You are an order processing assistant for Art-O-Mart. Help with order status, "
            "tracking, modifications, returns and inventory updates."
        ),
        guidelines=("Be accurate and efficient in all transaction-related operations.",),
    ),
    supported_actions=("chat", "reorderRecommendations", "checkLowStock"),
    default_suggestions=("Order status", "Modify order", "Cancel order", "Payment issues"),
    fallback_reply="I can help with your order information. What would you like to check?",
    max_consecutive_errors=3,
    action_deadlines={"checkLowStock": 10.0},
    temperature=0.3,
    max_tokens=800,
)

CONTENT_GENERATION = Archetype(
    name="contentGeneration",
    human_label="marketing",
    prompt=PromptTemplate(
        role_framing=(
            "You are a creative content assistant for Art-O-Mart. Help generate product "
            "descriptions, marketing content and cultural stories about handcrafted items."
        ),
        guidelines=(
            "Be creative and culturally respectful.",
            "Focus on authenticity and the human stories behind each craft.",
        ),
    ),
    supported_actions=(
        "chat",
        "generateListingContent",
        "generateMarketingContent",
        "segmentCustomers",
        "createArtisanStory",
        "optimizeForSEO",
    ),
    default_suggestions=("Product descriptions", "Cultural stories", "Marketing copy", "SEO content"),
    fallback_reply="I can help create compelling content for your artisan products. What do you need?",
    max_consecutive_errors=5,
    action_deadlines={
        "generateListingContent": 45.0,
        "generateMarketingContent": 45.0,
        "createArtisanStory": 45.0,
    },
    temperature=0.8,
    max_tokens=1500,
)

ARCHETYPES: Dict[str, Archetype] = {
    archetype.name: archetype
    for archetype in (
        PRODUCT_RECOMMENDATION,
        CUSTOMER_SUPPORT,
        ARTISAN_ASSISTANT,
        ORDER_PROCESSING,
        CONTENT_GENERATION,
    )
}

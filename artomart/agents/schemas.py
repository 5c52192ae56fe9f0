"""Pydantic payload and result schemas for structured agent actions.

Field names follow the JSON the storefront dashboards exchange, so they are
camelCase on purpose.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

ProductId = Union[str, int]
Priority = Literal["high", "medium", "low"]


# ---------------------------------------------------------------------------
# productRecommendation
# ---------------------------------------------------------------------------


class RecommendProductsInput(BaseModel):
    query: str = Field(min_length=1)
    preferences: Dict[str, Any] = Field(default_factory=dict)


class Recommendation(BaseModel):
    productId: ProductId
    productName: str
    artisanName: str
    price: float
    rating: float
    matchScore: float
    reason: str
    culturalInsight: Optional[str] = None


class BudgetRange(BaseModel):
    min: float
    max: float


class SearchCriteria(BaseModel):
    budget: BudgetRange
    categories: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)


class ProductRecommendations(BaseModel):
    recommendations: List[Recommendation]
    searchCriteria: SearchCriteria
    summary: str


class ParseSearchInput(BaseModel):
    query: str = Field(min_length=1)


class SearchFilters(BaseModel):
    keywords: List[str] = Field(default_factory=list)
    budgetMin: Optional[float] = None
    budgetMax: Optional[float] = None
    categories: List[str] = Field(default_factory=list)
    regions: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)
    artisanNames: List[str] = Field(default_factory=list)
    priceSort: Optional[Literal["asc", "desc"]] = None
    ratingMin: Optional[float] = None


# ---------------------------------------------------------------------------
# pricing (shared by productRecommendation and artisanAssistant)
# ---------------------------------------------------------------------------


class ProductData(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    materials: List[str] = Field(default_factory=list)
    productionTime: float = 0
    craftingComplexity: str = "medium"


class MarketContext(BaseModel):
    category: str
    region: str
    seasonality: Optional[str] = None
    competitorPrices: List[float] = Field(default_factory=list)


class PricingInput(BaseModel):
    productData: ProductData
    marketContext: MarketContext


class PriceFactor(BaseModel):
    name: str
    impact: str
    description: str


class PricingStrategy(BaseModel):
    name: str
    description: str
    expectedImpact: str


class PricingRecommendation(BaseModel):
    basePrice: float
    recommendedPrice: float
    priceRange: BudgetRange
    rationale: str
    factors: List[PriceFactor] = Field(default_factory=list)
    strategies: List[PricingStrategy] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# customerSupport
# ---------------------------------------------------------------------------


class SupportQueryInput(BaseModel):
    query: str = Field(min_length=1)


class QueryCategory(BaseModel):
    category: Literal[
        "Order Status",
        "Shipping",
        "Returns",
        "Product Info",
        "Payment",
        "Account",
        "Technical",
        "Other",
    ]
    subcategory: Optional[str] = None
    sentiment: Literal["positive", "neutral", "negative"]


class SuggestedAction(BaseModel):
    action: str
    description: str
    priority: Priority = "medium"


class SuggestedActions(BaseModel):
    actions: List[SuggestedAction]


class FaqEntry(BaseModel):
    question: str
    answer: str


class FaqInput(BaseModel):
    question: str = Field(min_length=1)
    faqs: List[FaqEntry] = Field(default_factory=list)


class FaqAnswer(BaseModel):
    answer: str
    matchedQuestion: Optional[str] = None
    confidence: float = Field(ge=0, le=1)


class EscalationInput(BaseModel):
    query: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# artisanAssistant
# ---------------------------------------------------------------------------


class OptimizationGoals(BaseModel):
    title: bool = True
    description: bool = True
    tags: bool = True
    pricing: bool = False
    images: bool = False


class Listing(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    price: Optional[float] = None
    images: List[str] = Field(default_factory=list)


class OptimizeListingInput(BaseModel):
    productId: ProductId
    listing: Listing
    goals: OptimizationGoals = Field(default_factory=OptimizationGoals)


class TextSuggestion(BaseModel):
    current: str
    suggestion: str
    reason: str


class TagSuggestion(BaseModel):
    current: List[str]
    suggestion: List[str]
    reason: str


class PriceSuggestion(BaseModel):
    current: float
    suggestion: float
    reason: str


class ImageSuggestion(BaseModel):
    current: List[str]
    suggestions: List[str]
    reason: str


class ListingOptimization(BaseModel):
    title: Optional[TextSuggestion] = None
    description: Optional[TextSuggestion] = None
    tags: Optional[TagSuggestion] = None
    pricing: Optional[PriceSuggestion] = None
    images: Optional[ImageSuggestion] = None


class BusinessInsightsInput(BaseModel):
    artisanId: str = Field(min_length=1)
    timeframe: str = "30days"
    salesData: List[Dict[str, Any]] = Field(default_factory=list)
    reviews: List[str] = Field(default_factory=list)


class ProductTrend(BaseModel):
    productId: ProductId
    trend: str
    recommendation: str


class SalesTrends(BaseModel):
    overall: str
    byProduct: List[ProductTrend] = Field(default_factory=list)


class CustomerFeedback(BaseModel):
    summary: str
    topPositives: List[str] = Field(default_factory=list)
    topConcerns: List[str] = Field(default_factory=list)
    actionItems: List[str] = Field(default_factory=list)


class MarketOpportunity(BaseModel):
    opportunity: str
    rationale: str
    suggestedActions: List[str] = Field(default_factory=list)


class GrowthRecommendation(BaseModel):
    area: str
    recommendation: str
    impact: str
    timeframe: str


class BusinessInsights(BaseModel):
    salesTrends: SalesTrends
    customerFeedback: CustomerFeedback
    marketOpportunities: List[MarketOpportunity] = Field(default_factory=list)
    growthRecommendations: List[GrowthRecommendation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# orderProcessing
# ---------------------------------------------------------------------------


class SalesRecord(BaseModel):
    productId: ProductId
    salesCount: int = Field(ge=0)
    period: str = "30days"
    currentStock: Optional[int] = None


class ReorderInput(BaseModel):
    salesData: List[SalesRecord] = Field(min_length=1)


class ReorderItem(BaseModel):
    productId: ProductId
    suggestedQuantity: int = Field(ge=0)
    reason: str


class ReorderRecommendations(BaseModel):
    recommendations: List[ReorderItem]


class StockItem(BaseModel):
    productId: ProductId
    name: str
    stock: int
    threshold: int = Field(default=5, ge=0)


class LowStockInput(BaseModel):
    products: List[StockItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# contentGeneration
# ---------------------------------------------------------------------------


class ListingContentInput(BaseModel):
    productDetails: Dict[str, Any] = Field(min_length=1)
    culturalContext: Dict[str, Any] = Field(default_factory=dict)


class Specification(BaseModel):
    name: str
    value: str


class SeoMetadata(BaseModel):
    metaTitle: str
    metaDescription: str
    focusKeywords: List[str] = Field(default_factory=list)


class ListingContent(BaseModel):
    title: str
    description: str
    shortDescription: str
    tags: List[str] = Field(default_factory=list)
    culturalStory: str
    specifications: List[Specification] = Field(default_factory=list)
    seoMetadata: SeoMetadata


class Campaign(BaseModel):
    type: Literal["email", "social", "blog"] = "email"
    target: str = Field(min_length=1)
    products: List[ProductId] = Field(default_factory=list)


class MarketingInput(BaseModel):
    campaign: Campaign


class MarketingCopy(BaseModel):
    subject: str
    body: str
    callToAction: str
    hashtags: List[str] = Field(default_factory=list)


class MarketingContent(BaseModel):
    content: MarketingCopy


class CustomerRecord(BaseModel):
    id: str
    totalSpent: float = Field(ge=0)
    categories: List[str] = Field(default_factory=list)


class SegmentInput(BaseModel):
    customers: List[CustomerRecord] = Field(min_length=1)


class CustomerSegment(BaseModel):
    segment: str
    customers: List[str]
    description: str = ""


class CustomerSegments(BaseModel):
    segments: List[CustomerSegment]


class ArtisanStoryInput(BaseModel):
    artisanProfile: Dict[str, Any] = Field(min_length=1)
    achievements: List[Dict[str, Any]] = Field(default_factory=list)


class Biography(BaseModel):
    introduction: str
    background: str
    journey: str
    philosophy: str


class CraftDetail(BaseModel):
    name: str
    description: str
    significance: str = ""


class Craft(BaseModel):
    tradition: str
    techniques: List[CraftDetail] = Field(default_factory=list)
    materials: List[CraftDetail] = Field(default_factory=list)


class Achievement(BaseModel):
    title: str
    description: str
    year: Optional[str] = None


class Impact(BaseModel):
    community: str
    cultural: str
    environmental: Optional[str] = None


class ArtisanStory(BaseModel):
    biography: Biography
    craft: Craft
    achievements: List[Achievement] = Field(default_factory=list)
    impact: Impact
    quotes: List[str] = Field(default_factory=list)


class SeoInput(BaseModel):
    content: str = Field(min_length=1)
    keywords: List[str] = Field(min_length=1)
    platform: str = "web"


class SeoImprovement(BaseModel):
    type: str
    suggestion: str
    priority: Priority


class SeoAnalysis(BaseModel):
    currentScore: float = Field(ge=0, le=100)
    improvements: List[SeoImprovement] = Field(default_factory=list)


class SeoHeader(BaseModel):
    level: int = Field(ge=1, le=6)
    text: str


class KeywordPlacement(BaseModel):
    word: str
    density: float = Field(ge=0)
    placement: List[str] = Field(default_factory=list)


class OptimizedContent(BaseModel):
    title: str
    description: str
    headers: List[SeoHeader] = Field(default_factory=list)
    content: str
    keywords: List[KeywordPlacement] = Field(default_factory=list)


class SeoOptimization(BaseModel):
    analysis: SeoAnalysis
    optimized: OptimizedContent
